# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Time-step playback over a canonical mesh.

This is the boundary a viewer consumes: which submeshes are visible at
the current step and what color each vertex gets. A submesh taken from
time step ``t`` whose attribute series has ``L`` entries is visible at
steps ``t .. t+L-1``; entry ``step - t`` of the series colors it.

Colors interpolate linearly between two legend colors by attribute
magnitude, normalized over the submesh's whole series so that colors
are comparable between steps.
"""

from typing import Optional
import logging

import numpy as np

from .mesh import CanonicalMesh, Submesh

logger = logging.getLogger(__name__)

RED = (1.0, 0.0, 0.0, 1.0)
GREEN = (0.0, 1.0, 0.0, 1.0)


class TimeStepPlayer:
    """
    Cursor over the time steps of a mesh.

    Args:
        mesh: Mesh to play back
        attribute: Attribute driving colors and visibility spans
            (defaults to the first attribute of the first submesh)
        legend: Colors for the lowest and highest magnitude

    Raises:
        KeyError: If no submesh carries ``attribute``
    """

    def __init__(
        self,
        mesh: CanonicalMesh,
        attribute: Optional[str] = None,
        legend: tuple[tuple, tuple] = (RED, GREEN),
    ):
        self.mesh = mesh
        if attribute is None:
            names = mesh.attribute_names()
            attribute = names[0] if names else None
        elif not any(attribute in s.attribute_names() for s in mesh.submeshes.values()):
            raise KeyError(f"Mesh '{mesh.name}' has no attribute '{attribute}'")
        self.attribute = attribute
        self.legend = (
            np.asarray(legend[0], dtype=np.float32),
            np.asarray(legend[1], dtype=np.float32),
        )
        self._time_varying = any(s.time_step > 0 for s in mesh.submeshes.values())
        self._step = 0

    @property
    def step_count(self) -> int:
        return max(self.mesh.time_step_count, 1)

    @property
    def current_step(self) -> int:
        return self._step

    def reset(self) -> int:
        self._step = 0
        return self._step

    def next_step(self) -> int:
        """Advance one step, wrapping after the last."""
        self._step = (self._step + 1) % self.step_count
        return self._step

    def span(self, submesh: Submesh) -> int:
        """Number of consecutive steps a submesh stays visible."""
        if self.attribute is not None:
            for series in (submesh.scalars.get(self.attribute), submesh.vectors.get(self.attribute)):
                if series:
                    return len(series)
        return 1 if self._time_varying else self.step_count

    def visible_submeshes(self, step: Optional[int] = None) -> list[int]:
        """Keys of the submeshes visible at ``step`` (the current step by default)."""
        step = self._step if step is None else step
        return [
            key for key, submesh in self.mesh.submeshes.items()
            if submesh.time_step <= step < submesh.time_step + self.span(submesh)
        ]

    def vertex_colors(self, key: int, step: Optional[int] = None) -> np.ndarray:
        """
        Per-vertex RGBA colors of a submesh at ``step``.

        Returns:
            (n, 4) float32 colors

        Raises:
            KeyError: Unknown submesh, or the submesh lacks the attribute
            ValueError: The submesh is not visible at ``step``
        """
        step = self._step if step is None else step
        submesh = self.mesh.submeshes[key]
        if self.attribute is None:
            raise KeyError(f"Mesh '{self.mesh.name}' has no attributes to color by")
        series = submesh.attribute(self.attribute)

        index = step - submesh.time_step
        if not 0 <= index < len(series):
            raise ValueError(f"Submesh {key} is not visible at step {step}")

        magnitudes = [np.linalg.norm(values, axis=1) for values in series]
        every = np.concatenate(magnitudes)
        lo = float(every.min()) if len(every) else 0.0
        hi = float(every.max()) if len(every) else 0.0

        current = magnitudes[index]
        if hi > lo:
            t = ((current - lo) / (hi - lo)).astype(np.float32)
        else:
            t = np.zeros(len(current), dtype=np.float32)
        start, end = self.legend
        return start + (end - start) * t[:, None]
