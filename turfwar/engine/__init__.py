"""
Turf War Engine
Territory registry, control ledger, income math and the war state machine.
No web framework or database here; see turfwar.api for that.
"""

GRID_WIDTH = 8
GRID_HEIGHT = 8

MAX_FORTIFICATION_LEVEL = 5
MIN_CONTROL_DIFFICULTY = 1
MAX_CONTROL_DIFFICULTY = 10

# Defending family id recorded on wars over territories nobody controls.
UNCLAIMED = "unclaimed"
