"""Application-wide constants.

Grid units: 1 pixel = 5 mm. Depth-dose tables are tabulated with one grid
cell treated as 1 mm (see DEPTH_TABLE_CM_PER_UNIT).
"""

# Field of view
FOV_DIAMETER_PIXELS = 400  # 400x400 px canvas = 200 cm x 200 cm
PIXEL_TO_CM = 0.5  # 1 px = 5 mm
DEPTH_TABLE_CM_PER_UNIT = 0.1  # dmax / mu_eff tables: 1 unit = 1 mm

# Reference phantom (createSimplePhantom)
PHANTOM_DIAMETER_PIXELS = 80  # 40 cm water cylinder
PHANTOM_AIR_VALUE = 5.0
PHANTOM_WATER_VALUE = 100.0

# Pixel-value thresholds for material classification (upper bounds, exclusive)
AIR_THRESHOLD = 10.0
FAT_THRESHOLD = 60.0
WATER_THRESHOLD = 120.0
SOFT_TISSUE_THRESHOLD = 200.0

# Beam defaults
DEFAULT_FIELD_WIDTH = 20.0  # px
DEFAULT_ENERGY_MV = 6.0
PENCIL_BEAM_SPACING = 1.0  # px

# Geometry
NOMINAL_SSD = 1000.0  # source-to-surface distance [grid units]
TRACE_START_DISTANCE = FOV_DIAMETER_PIXELS / 2  # upstream of isocenter plane
SURFACE_SEARCH_STEP = 0.5
SURFACE_AIR_FACTOR = 1.2  # surface = density > 1.2 x AIR
AIR_LIKE_FACTOR = 1.5  # air-like sample = density < 1.5 x AIR

# Ray marching
STEP_DEFAULT = 0.5
STEP_INTERFACE = 0.1
STEP_AIR = 1.0
LOW_DENSITY_THRESHOLD = 0.3  # below this density the coarse step is used
OUTPUT_CUTOFF_FRACTION = 1e-4  # stop at 0.01 % of initial pencil output

# Caches
DEFAULT_CACHE_CAPACITY = 1000

# Standard isodose levels (fraction of max)
DEFAULT_CONTOUR_LEVELS = [1.0, 0.8, 0.5, 0.2, 0.1, 0.05]
