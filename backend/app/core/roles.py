# app/core/roles.py

import enum

class TenantMembershipRole(str, enum.Enum):
    OWNER = "OWNER"      # creator / billing owner
    MANAGER = "MANAGER"  # counts against max_managers
    ARTIST = "ARTIST"    # counts against max_artists
