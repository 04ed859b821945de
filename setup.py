#!/usr/bin/env python3
# encoding: utf-8
#
# Calscrub
# Copyright (C) 2024 The Calscrub authors
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; version 3
# of the License or (at your option) any later version of
# the License.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston,
# MA  02110-1301, USA.

from setuptools import setup

version = "0.1.0"

with open('README.rst', encoding='utf-8') as f:
    long_description = f.read()

setup(name="calscrub",
      description="Fetch and sanitize calendars from CalDAV servers",
      long_description=long_description,
      version=version,
      license="GNU GPLv3 or later",
      install_requires=[
          'aiohttp',
          'icalendar>=5.0,<7',
          'defusedxml',
          'multidict',
          'python-dateutil',
      ],
      entry_points={
          'console_scripts': [
              'calscrub = calscrub.__main__:run'
          ],
      },
      packages=['calscrub'],
      test_suite='tests.test_suite',
      classifiers=[
          'Development Status :: 3 - Alpha',
          'License :: OSI Approved :: '
          'GNU General Public License v3 or later (GPLv3+)',
          'Programming Language :: Python :: 3.9',
          'Programming Language :: Python :: 3.10',
          'Programming Language :: Python :: Implementation :: CPython',
          'Operating System :: POSIX',
      ],
      python_requires='>=3.9',
      )
