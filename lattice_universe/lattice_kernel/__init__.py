"""
Lattice kernel: forward expansion, backpropagation and serialization.

Modules:
- expansion.py: Generation-by-generation growth with insert-or-merge of children
- backprop.py: Batched, order-independent correction passes (BackpropReceipt)
- kernel.py: LatticeKernel run, stats, serialization, result digest
"""

from .expansion import LatticeGrid, expand_lattice
from .backprop import BackpropReceipt, backpropagate
from .kernel import KernelReceipt, LatticeKernel, compute_lattice, compute_stats, lattice_digest

__all__ = [
    "LatticeGrid",
    "expand_lattice",
    "BackpropReceipt",
    "backpropagate",
    "KernelReceipt",
    "LatticeKernel",
    "compute_lattice",
    "compute_stats",
    "lattice_digest",
]
