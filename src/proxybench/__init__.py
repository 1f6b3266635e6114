from proxybench.config import BenchConfig, load_bench_config
from proxybench.errors import BenchError

__all__ = ["BenchConfig", "BenchError", "load_bench_config"]

__version__ = "0.1.0"
