"""FlashMaster: local-first spaced-repetition flashcards."""

from flashmaster.consts import VERSION

__version__ = VERSION
