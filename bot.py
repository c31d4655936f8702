"""Entry point for running the bot on python-telegram-bot.

Run: python bot.py
"""

from cardlab.main import main

if __name__ == "__main__":
    main()
