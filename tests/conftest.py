#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.conftest
    ~~~~~~~~~~~~~~

    Shared fixtures: an in-memory database, a frozen clock, a recording
    notifier and a wired WaitlistAPI.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import pytest
from cradle.core.api import WaitlistAPI
from cradle.core.db import Database
from cradle.core.utils import FrozenClock
from tests.helpers import START, RecordingNotifier, Seed


@pytest.fixture
def db():
    database = Database('sqlite://', echo=False).init()
    yield database
    database.drop()
    database.engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def waitlist(db, clock, notifier):
    return WaitlistAPI(db, clock, notifier)


@pytest.fixture
def seed(waitlist, clock):
    return Seed(waitlist, clock)
