"""Utilities for handling KeyboardInterrupt in try-except blocks.

Matrix cells run in worker threads; a KeyboardInterrupt caught inside a
stage must still reach the main thread so the whole build stops.
"""

import _thread


def handle_keyboard_interrupt_properly(ke: KeyboardInterrupt) -> None:
    """Handle KeyboardInterrupt by propagating it to the main thread.

    Usage:
        try:
            packager.pack(bootstrap, "xz")
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)
        except Exception as e:
            raise ArchiveError(...) from e

    Args:
        ke: The KeyboardInterrupt exception to handle

    Raises:
        KeyboardInterrupt: Always re-raises the exception after handling
    """
    _thread.interrupt_main()
    raise ke
