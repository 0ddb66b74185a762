"""Ward and bed allocation for the inpatient department.

This package holds the ward/bed models, the allocation guard that checks
bed status transitions, ward capacity and bed numbering before any write,
and the services that apply those writes under row locks.
"""
