#!/usr/bin/env python
"""
Command line entry point for the inpatient allocation project.

Besides Django's built-in commands this exposes ``seed_wards`` and
``refresh_occupancy`` from the ``allocation`` app.
"""
import os
import sys


def main() -> None:
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'inpatient.settings')
    try:
        from django.core.management import execute_from_command_line  # type: ignore
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Is it installed in the active virtual "
            "environment? Try `pip install -e .[test]`."
        ) from exc
    execute_from_command_line(sys.argv)


if __name__ == '__main__':
    main()
