# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for one concern:
#
#   user_service          credential store + register / login / update
#   token_service         bearer token issue / verify
#   relationship_service  follow and favorite edges, batch lookups
#   profile_service       public profiles, follow / unfollow by username
#   article_service       rich article reads (single, list, feed), writes
#   comment_service       comments with author profiles
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.
