#!/usr/bin/env python

"""
    Core module for Cradle: persistence, models and the waitlist engine

    Nothing is connected at import time; construct a `Database` and hand
    it to `cradle.core.api.WaitlistAPI`.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""
