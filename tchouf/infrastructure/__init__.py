# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - config/: Environment and settings management
# - persistence/: Repository interface plus memory, SQLite and Firestore backends
#
# This layer can be replaced entirely without affecting domain/application layers.
