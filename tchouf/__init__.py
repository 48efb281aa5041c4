# Tchouf - Algerian Business Directory & Reviews
# ===============================================
# Core of the directory: businesses, star reviews and ownership claims.
#
# ARCHITECTURE LAYERS:
# - Domain:         Entity records, input schemas, error taxonomy (no I/O)
# - Application:    Rating aggregation, claim lifecycle, directory services
# - Infrastructure: Settings and the swappable storage backends
#
# The HTTP routes, auth provider and file storage live outside this package
# and talk to it through tchouf.bootstrap.create_app().

__version__ = "0.1.0"
