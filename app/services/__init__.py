# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single domain aggregate:
#
#   article_service    CRUD, pagination, search and history for Article
#   counter_service    per-device view counters and likes
#   space_service      Space CRUD and the per-space article tree
#   user_service       CRUD for User
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.
