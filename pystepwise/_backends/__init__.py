"""
Backend selection and management.

Provides a unified interface to the least-squares engines used by the models.
"""

from .base import BackendBase, LinearModelResult, QRDecomposition
from .cpu_fp64_backend import CPUBackendFP64


def get_backend(backend: str = 'auto') -> BackendBase:
    """
    Get computational backend.

    Parameters
    ----------
    backend : str or BackendBase
        Backend selection:
        - 'auto': Best available backend (currently the CPU backend)
        - 'cpu': CPU with NumPy/SciPy (FP64)
        A ready backend instance is returned unchanged.

    Returns
    -------
    BackendBase
        Backend instance

    Examples
    --------
    >>> backend = get_backend('cpu')
    >>> backend.name
    'cpu_fp64'
    """
    if isinstance(backend, BackendBase):
        return backend

    if backend in ('auto', 'cpu'):
        return CPUBackendFP64()

    raise ValueError(
        f"Unknown backend: '{backend}'\n"
        f"Valid options: 'auto', 'cpu'"
    )


def list_available_backends() -> list:
    """List names of available backends."""
    return ['cpu']


def print_backend_info():
    """Print detailed backend information (diagnostic)."""
    backend = get_backend('auto')
    info = backend.get_device_info()

    print("pystepwise Backend Status")
    print("=" * 50)
    print(f"\nAvailable Backends:")
    print(f"  CPU (FP64): ✓ - pivoted QR decomposition (exact OLS)")
    print(f"\nRecommended Backend:")
    print(f"  {backend.name}")
    print(f"  {info['library']}")


# Export main interface
__all__ = [
    'get_backend',
    'list_available_backends',
    'print_backend_info',
    'BackendBase',
    'LinearModelResult',
    'QRDecomposition',
    'CPUBackendFP64',
]


if __name__ == "__main__":
    print_backend_info()
