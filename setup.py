#!/usr/bin/python3
# Setup file for twig
# Copyright (C) 2025 Twig contributors
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

setup(package_data={"": ["py.typed"]})
