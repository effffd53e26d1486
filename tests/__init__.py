"""Test package marker for the mailmirror suites.

What:
  Marks ``tests`` as a package so pytest resolves the shared ``conftest``
  consistently.

Invariants & Safety:
  - The file must remain side-effect free so that importing ``tests`` never
    mutates environment state or test fixtures.
"""
