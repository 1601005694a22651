"""Prometheus metrics for monitoring detection runs and projections"""

from prometheus_client import Counter, Histogram

# Detection metrics
detection_runs_counter = Counter(
    "cashflow_detection_runs_total",
    "Recurrence detection runs",
    ["outcome"],  # detected | none | insufficient_data
)

candidates_detected_counter = Counter(
    "cashflow_candidates_detected_total",
    "Recurrence candidates detected by frequency",
    ["frequency"],
)

duplicate_detections_counter = Counter(
    "cashflow_duplicate_detections_total",
    "Candidates skipped because a validated recurrence already covers them",
)

# Projection metrics
projection_counter = Counter(
    "cashflow_projection_total",
    "Projections computed",
    ["risk_level"],  # success | warning | danger
)

projection_duration_histogram = Histogram(
    "cashflow_projection_duration_seconds",
    "Projection computation time",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

simulated_paths_counter = Counter(
    "cashflow_simulated_paths_total",
    "Monte Carlo paths simulated",
)


def record_detection(success: bool, frequencies: list[str], skipped_duplicates: int) -> None:
    """Record detection metrics"""
    if not success:
        outcome = "insufficient_data"
    elif frequencies:
        outcome = "detected"
    else:
        outcome = "none"
    detection_runs_counter.labels(outcome=outcome).inc()

    for frequency in frequencies:
        candidates_detected_counter.labels(frequency=frequency).inc()
    if skipped_duplicates:
        duplicate_detections_counter.inc(skipped_duplicates)


def record_projection(risk_level: str, simulation_count: int, duration_seconds: float) -> None:
    """Record projection metrics for monitoring risk distribution and latency"""
    projection_counter.labels(risk_level=risk_level).inc()
    simulated_paths_counter.inc(simulation_count)
    projection_duration_histogram.observe(duration_seconds)
