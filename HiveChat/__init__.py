"""
    __  ___            ________          __
   / / / (_)   _____  / ____/ /_  ____ _/ /_
  / /_/ / / | / / _ \/ /   / __ \/ __ `/ __/
 / __  / /| |/ /  __/ /___/ / / / /_/ / /_
/_/ /_/_/ |___/\___/\____/_/ /_/\__,_/\__/

HiveChat Project - Realtime group chat with threads, reactions and an inline
retrieval-augmented assistant.

License: Apache-2.0 License

"Ask the hive."
"""

__version__ = "1.0.0"
