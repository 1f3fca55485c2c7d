# minimal data for each estimator
MIN_TWO_VIEW_MATCHES = 7
MIN_UNCALIBRATED_RESECTION = 6
MIN_CALIBRATED_RESECTION = 5

# robust estimation, thresholds in pixels
F_RANSAC_THRESHOLD = 1.0
RESECTION_THRESHOLD = 2.0
REPROJ_ERROR_THRESH = 2.0
TRIANGULATION_THRESHOLD = 2.0
HOMOGRAPHY_THRESHOLD = 3.0
CONFIDENCE = 0.999
# a model explaining fewer of the correspondences is rejected
MIN_INLIER_RATIO = 0.5
RANSAC_MAX_ITERATIONS = 2000

# fixed so that repeated runs pick the same samples
RANSAC_SEED = 42

# image ordering
ORDER_MIN_COMMON_MATCHES = 10

# triangulation
MIN_VIEWS_INITIAL = 2
MIN_VIEWS_INCREMENTAL = 3

# bundle adjustment
BA_INTERVAL = 5
BA_LOSS = "soft_l1"
BA_FTOL = 1e-8
BA_MAX_NFEV = 200
