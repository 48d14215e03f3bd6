"""
Test suite for RoomChat.
"""
