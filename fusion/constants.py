# fusion/constants.py

# Probability clamp used before any odds or log computation
EPSILON = 1e-6

# Default reliability-diagram resolution (fixed-width buckets over [0, 1])
DEFAULT_CALIBRATION_BUCKETS = 10

# Default strike area-of-effect radius (square window, radius 1 = 3x3)
DEFAULT_STRIKE_RADIUS = 1
