"""Column-level profiling: type inference, statistics, quality, security."""
