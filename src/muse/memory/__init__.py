"""Memory store: markdown categories plus a version cache kept in sync with them.

Layout:
    ~/.muse/memory/
    ├── summary.md                     # Derived: "### name" + description per category
    ├── versions.json                  # Ledger: content hash + description per category
    ├── user.local.md                  # The "user" category (git-ignored)
    ├── .gitignore
    └── feature/
        └── auth.md                    # Category "feature/auth"

versions.json is hand-editable; summary.md is always regenerated from it.
"""
