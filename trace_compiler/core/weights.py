"""
TraceCompiler.core.weights

Type-erased weight boxes.

Every layer in a graph owns exactly one AnyWeights box. The box is a tagged
union: a `kind` string naming the layer family plus an ordered mapping of
named tensors. Boxes support the vector-space operations needed to treat a
heterogeneous list of them as one vector (gradients, accumulation, optimizer
updates):

    w = AnyWeights('dense', {'kernel': k, 'bias': b})
    g = AnyWeights.zero() + w * 0.5

`AnyWeights.zero()` is a kind-less additive identity so that accumulators can
start empty without knowing which layer they will meet.

WeightVector is the ordered sequence of boxes of a compiled graph, aligned
with compute order.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import collections.abc
from collections import OrderedDict
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import torch
from torch import Tensor

from .errors import WeightTypeError


ZERO_KIND = 'zero'
EMPTY_KIND = 'empty'

Scalar = Union[int, float, Tensor]


def _as_scalar(factor):
    """`factor` as a number or 0-dim tensor, or None if it is not a scalar."""
    if isinstance(factor, (int, float)):
        return factor
    if isinstance(factor, Tensor) and factor.numel() == 1:
        return factor.reshape(())
    return None


class AnyWeights:
    """
    Tagged container for one layer's weights.

    Attributes:
        kind: Layer family tag ('dense', 'conv2d', 'batch_norm', 'empty', ...)
        tensors: Ordered name -> tensor mapping
    """

    __slots__ = ('kind', 'tensors')

    def __init__(self, kind: str, tensors: Optional[Mapping[str, Tensor]] = None):
        self.kind = kind
        self.tensors: Dict[str, Tensor] = OrderedDict(tensors or {})

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def zero(cls) -> 'AnyWeights':
        """Additive identity compatible with every kind."""
        return cls(ZERO_KIND)

    @classmethod
    def empty(cls) -> 'AnyWeights':
        """Weights of a layer with no trainable parameters."""
        return cls(EMPTY_KIND)

    @property
    def is_zero(self) -> bool:
        return self.kind == ZERO_KIND

    def zeros_like(self) -> 'AnyWeights':
        return AnyWeights(self.kind, {k: torch.zeros_like(v) for k, v in self.tensors.items()})

    def detach(self) -> 'AnyWeights':
        return AnyWeights(self.kind, {k: v.detach() for k, v in self.tensors.items()})

    def clone(self) -> 'AnyWeights':
        return AnyWeights(self.kind, {k: v.detach().clone() for k, v in self.tensors.items()})

    # -------------------------------------------------------------------------
    # Checked access
    # -------------------------------------------------------------------------

    def expect(self, kind: str) -> 'AnyWeights':
        """Return self if the box holds `kind` weights, else raise."""
        if self.kind != kind:
            raise WeightTypeError(
                f"Expected '{kind}' weights, got '{self.kind}'. "
                "Weight boxes are misaligned with compute order."
            )
        return self

    def __getitem__(self, name: str) -> Tensor:
        try:
            return self.tensors[name]
        except KeyError:
            raise WeightTypeError(
                f"'{self.kind}' weights have no tensor '{name}' "
                f"(has: {', '.join(self.tensors) or 'none'})"
            ) from None

    def __contains__(self, name: str) -> bool:
        return name in self.tensors

    def __iter__(self) -> Iterator[Tensor]:
        return iter(self.tensors.values())

    def __len__(self) -> int:
        return len(self.tensors)

    def numel(self) -> int:
        return sum(t.numel() for t in self.tensors.values())

    # -------------------------------------------------------------------------
    # Vector space
    # -------------------------------------------------------------------------

    def _copy(self) -> 'AnyWeights':
        return AnyWeights(self.kind, {k: v.clone() for k, v in self.tensors.items()})

    def _combine(self, other: 'AnyWeights', op) -> 'AnyWeights':
        if not isinstance(other, AnyWeights):
            return NotImplemented
        if other.is_zero:
            return self._copy()
        if self.is_zero:
            return other._copy() if op is torch.add else -other
        if self.kind != other.kind or list(self.tensors) != list(other.tensors):
            raise WeightTypeError(
                f"Cannot combine '{self.kind}'{list(self.tensors)} "
                f"with '{other.kind}'{list(other.tensors)}"
            )
        return AnyWeights(
            self.kind,
            {k: op(v, other.tensors[k]) for k, v in self.tensors.items()},
        )

    def __add__(self, other: 'AnyWeights') -> 'AnyWeights':
        return self._combine(other, torch.add)

    def __sub__(self, other: 'AnyWeights') -> 'AnyWeights':
        return self._combine(other, torch.sub)

    def __neg__(self) -> 'AnyWeights':
        return AnyWeights(self.kind, {k: -v for k, v in self.tensors.items()})

    def scale(self, factor: Scalar) -> 'AnyWeights':
        factor = _as_scalar(factor)
        if factor is None:
            raise TypeError("scale factor must be a number or a one-element tensor")
        return AnyWeights(self.kind, {k: v * factor for k, v in self.tensors.items()})

    def __mul__(self, factor: Scalar) -> 'AnyWeights':
        if _as_scalar(factor) is None:
            return NotImplemented
        return self.scale(factor)

    __rmul__ = __mul__

    def dot(self, other: 'AnyWeights') -> Tensor:
        if self.is_zero or other.is_zero:
            return torch.zeros(())
        if self.kind != other.kind:
            raise WeightTypeError(f"Cannot dot '{self.kind}' with '{other.kind}'")
        total = torch.zeros(())
        for k, v in self.tensors.items():
            total = total + (v * other[k]).sum()
        return total

    def allclose(self, other: 'AnyWeights', rtol: float = 1e-5, atol: float = 1e-8) -> bool:
        if self.kind != other.kind or list(self.tensors) != list(other.tensors):
            return False
        return all(
            torch.allclose(v, other.tensors[k], rtol=rtol, atol=atol)
            for k, v in self.tensors.items()
        )

    def __repr__(self) -> str:
        if not self.tensors:
            return f"AnyWeights({self.kind})"
        parts = ', '.join(f"{k}={list(v.shape)}" for k, v in self.tensors.items())
        return f"AnyWeights({self.kind}: {parts})"


class WeightVector(collections.abc.Sequence):
    """
    Ordered heterogeneous list of AnyWeights treated as a single vector.

    Index i holds the weights of the i-th layer in compute order.
    """

    def __init__(self, boxes: Sequence[AnyWeights]):
        self._boxes: Tuple[AnyWeights, ...] = tuple(boxes)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return WeightVector(self._boxes[index])
        return self._boxes[index]

    def __len__(self) -> int:
        return len(self._boxes)

    def tensors(self) -> List[Tensor]:
        """All tensors, box by box, in insertion order."""
        return [t for box in self._boxes for t in box.tensors.values()]

    def numel(self) -> int:
        return sum(box.numel() for box in self._boxes)

    def zeros_like(self) -> 'WeightVector':
        return WeightVector([box.zeros_like() for box in self._boxes])

    def detach(self) -> 'WeightVector':
        return WeightVector([box.detach() for box in self._boxes])

    def clone(self) -> 'WeightVector':
        return WeightVector([box.clone() for box in self._boxes])

    def _check_aligned(self, other: 'WeightVector') -> None:
        if len(self) != len(other):
            raise WeightTypeError(
                f"Weight vectors have different lengths ({len(self)} vs {len(other)})"
            )

    def __add__(self, other: 'WeightVector') -> 'WeightVector':
        if not isinstance(other, WeightVector):
            return NotImplemented
        self._check_aligned(other)
        return WeightVector([a + b for a, b in zip(self._boxes, other._boxes)])

    def __sub__(self, other: 'WeightVector') -> 'WeightVector':
        if not isinstance(other, WeightVector):
            return NotImplemented
        self._check_aligned(other)
        return WeightVector([a - b for a, b in zip(self._boxes, other._boxes)])

    def __neg__(self) -> 'WeightVector':
        return WeightVector([-box for box in self._boxes])

    def __mul__(self, factor: Scalar) -> 'WeightVector':
        if _as_scalar(factor) is None:
            return NotImplemented
        return WeightVector([box * factor for box in self._boxes])

    __rmul__ = __mul__

    def dot(self, other: 'WeightVector') -> Tensor:
        self._check_aligned(other)
        total = torch.zeros(())
        for a, b in zip(self._boxes, other._boxes):
            total = total + a.dot(b)
        return total

    def norm(self) -> Tensor:
        return self.dot(self).sqrt()

    # -------------------------------------------------------------------------
    # Flat buffer view
    # -------------------------------------------------------------------------

    def offsets(self) -> List[Tuple[int, int]]:
        """(offset, length) of each box inside flat()."""
        spans = []
        offset = 0
        for box in self._boxes:
            n = box.numel()
            spans.append((offset, n))
            offset += n
        return spans

    def flat(self) -> Tensor:
        """Concatenate every tensor into one 1-D tensor."""
        ts = self.tensors()
        if not ts:
            return torch.zeros(0)
        return torch.cat([t.reshape(-1) for t in ts])

    @classmethod
    def unflatten(cls, flat: Tensor, like: 'WeightVector') -> 'WeightVector':
        """Split a flat tensor back into boxes shaped like `like`."""
        if flat.dim() != 1 or flat.numel() != like.numel():
            raise WeightTypeError(
                f"Flat buffer of shape {list(flat.shape)} does not match "
                f"{like.numel()} weights"
            )
        boxes = []
        offset = 0
        for box in like:
            tensors = OrderedDict()
            for name, t in box.tensors.items():
                n = t.numel()
                tensors[name] = flat[offset:offset + n].view_as(t)
                offset += n
            boxes.append(AnyWeights(box.kind, tensors))
        return cls(boxes)

    def __repr__(self) -> str:
        return f"WeightVector({len(self)} boxes, {self.numel():,} weights)"


__all__ = [
    'AnyWeights',
    'WeightVector',
    'ZERO_KIND',
    'EMPTY_KIND',
]
