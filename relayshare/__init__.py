# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Share one local directory with a remote viewer through a PIN-keyed relay."""

__version__ = "0.1.0"
