"""
Submission verification for the bulk verifier.
Fetches certificate and post pages with rate-limited, retrying HTTP, extracts identity and
content signals, and fuzzy-matches them against the roster name.
"""
