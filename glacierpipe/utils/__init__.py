# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Glacier Pipe utilities."""
