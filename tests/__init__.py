# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.
