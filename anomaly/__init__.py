# importing the scenario modules registers them
from anomaly import dirty_writes, non_repeatable_reads, write_skew  # noqa: F401
