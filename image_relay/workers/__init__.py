"""
Notification-driven workers.

- naming: filename derivation (pure)
- enrichment: image path -> session lookup
- fetcher / storage: byte retrieval and upload
- handlers: the per-notification pipeline
- listener / service / runner: subscription, resource ownership, entry point
"""
