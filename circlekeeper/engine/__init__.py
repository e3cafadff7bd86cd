"""Engine package - Scoring, tier ledger, capacity, review sessions.

Modules:
    - scoring: Engagement scorer and tier suggestions
    - suggestion_cache: Fingerprint-keyed suggestion memo
    - ledger: Tier commits and assignment history
    - capacity: Tier capacity audit and rebalancing
    - pruning: Archive and reactivate contacts
    - review: Weekly review sessions
    - templates: Review suggestion text (Jinja2)
    - container: Wiring of all of the above
"""
