#!/usr/bin/env python

"""
    Cradle, the waitlist priority & capacity-offer engine for daycares

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

__title__ = 'cradle'
__version__ = '0.1.0'
__author__ = 'AUTHORS'
