"""
    ____                        ________          __
   / __ \____  ____  ____ ___  / ____/ /_  ____ _/ /_
  / /_/ / __ \/ __ \/ __ `__ \/ /   / __ \/ __ `/ __/
 / _, _/ /_/ / /_/ / / / / / / /___/ / / / /_/ / /_
/_/ |_|\____/\____/_/ /_/ /_/\____/_/ /_/\__,_/\__/

RoomChat Project - A real-time, room-based WebSocket chat server.

License: Apache-2.0 License

"Every room has a history."
"""

__version__ = "1.0.0"
