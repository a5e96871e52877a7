# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single concern:
#
#   article_service  — listing (cached), search, CRUD for Article
#   comment_service  — CRUD for comments on an Article
#   image_service    — size check and JPEG/WebP variant generation
#   stats_service    — cached aggregate counters
#   user_service     — registration and lookup for User
#
# Service functions take an AsyncSession as their first argument and
# receive the cache client and storage explicitly from the router layer.
# Write functions commit before invalidating caches.
