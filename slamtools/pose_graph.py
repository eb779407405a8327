"""Pose-graph optimisation over SE(3) using the Lie-algebra error."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from typing import Iterable, TextIO

import numpy as np
from scipy.sparse import coo_matrix, identity
from scipy.sparse.linalg import spsolve

from slamtools.lie import SE3

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"
DEFAULT_OUTPUT = "result_lie.g2o"

_INFO_VALUES = 21
_LM_TAU = 1e-5
_LM_MAX_TRIES = 10
_BLOCK_ROWS, _BLOCK_COLS = (a.ravel() for a in np.indices((6, 6)))
_UPPER = [(i, j) for i in range(6) for j in range(i, 6)]


@dataclass
class PoseVertex:
    """A pose in the graph; fixed vertices are not changed by optimisation."""

    id: int
    estimate: SE3
    fixed: bool = False


@dataclass
class PoseEdge:
    """A relative-pose measurement from ``vertex1`` to ``vertex2``."""

    id: int
    vertex1: int
    vertex2: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(6))

    def error(self, graph: PoseGraph) -> np.ndarray:
        """log(Z^-1 T1^-1 T2), translation part first."""
        t1 = graph._vertex(self.vertex1).estimate
        t2 = graph._vertex(self.vertex2).estimate
        return (self.measurement.inverse() * t1.inverse() * t2).log()


def jr_inv(error) -> np.ndarray:
    """Inverse right Jacobian used for the edge Jacobians.

    The first-order approximation is replaced by the identity, which is
    what the optimiser uses.
    """
    if not isinstance(error, SE3):
        arr = np.asarray(error, dtype=float).reshape(-1)
        if arr.shape != (6,):
            raise ValueError(f"expected a 6-vector or an SE3, got shape {arr.shape}")
    return np.eye(6)


def _format(value) -> str:
    return repr(float(value))


def _floats(tokens: list[str], number: int) -> list[float]:
    try:
        return [float(t) for t in tokens]
    except ValueError as exc:
        raise ValueError(f"line {number}: {exc}") from None


def _ints(tokens: list[str], number: int) -> list[int]:
    try:
        return [int(t) for t in tokens]
    except ValueError as exc:
        raise ValueError(f"line {number}: {exc}") from None


@dataclass
class PoseGraph:
    """Vertices keyed by id, and the edges between them."""

    vertices: dict[int, PoseVertex] = field(default_factory=dict)
    edges: list[PoseEdge] = field(default_factory=list)
    verbose: bool = False

    def _vertex(self, vid: int) -> PoseVertex:
        try:
            return self.vertices[vid]
        except KeyError:
            raise KeyError(f"no vertex with id {vid}") from None

    @classmethod
    def load(cls, stream: Iterable[str]) -> PoseGraph:
        """Read vertices and edges in the g2o SE3:QUAT format; other lines are skipped."""
        graph = cls()
        for number, line in enumerate(stream, 1):
            tokens = line.split()
            if not tokens:
                continue
            tag, rest = tokens[0], tokens[1:]
            if tag == VERTEX_TAG:
                if len(rest) != 8:
                    raise ValueError(f"line {number}: vertex needs 8 values, got {len(rest)}")
                (vid,) = _ints(rest[:1], number)
                tx, ty, tz, qx, qy, qz, qw = _floats(rest[1:], number)
                if vid in graph.vertices:
                    raise ValueError(f"line {number}: duplicate vertex id {vid}")
                graph.vertices[vid] = PoseVertex(
                    vid, SE3.from_quaternion(qw, qx, qy, qz, [tx, ty, tz]), fixed=vid == 0
                )
            elif tag == EDGE_TAG:
                if len(rest) not in (9, 9 + _INFO_VALUES):
                    raise ValueError(f"line {number}: malformed edge with {len(rest)} values")
                v1, v2 = _ints(rest[:2], number)
                for vid in (v1, v2):
                    if vid not in graph.vertices:
                        raise ValueError(f"line {number}: edge refers to unknown vertex {vid}")
                tx, ty, tz, qx, qy, qz, qw = _floats(rest[2:9], number)
                information = np.eye(6)
                if len(rest) > 9:
                    information = np.zeros((6, 6))
                    for (i, j), value in zip(_UPPER, _floats(rest[9:], number)):
                        information[i, j] = value
                        information[j, i] = value
                graph.edges.append(
                    PoseEdge(
                        len(graph.edges),
                        v1,
                        v2,
                        SE3.from_quaternion(qw, qx, qy, qz, [tx, ty, tz]),
                        information,
                    )
                )
        return graph

    def save(self, stream: TextIO) -> None:
        """Write the graph in the g2o SE3:QUAT format."""
        for vertex in self.vertices.values():
            w, x, y, z = vertex.estimate.rotation.unit_quaternion()
            values = [*vertex.estimate.translation, x, y, z, w]
            stream.write(
                f"{VERTEX_TAG} {vertex.id} " + " ".join(_format(v) for v in values) + "\n"
            )
        for edge in self.edges:
            w, x, y, z = edge.measurement.rotation.unit_quaternion()
            values = [*edge.measurement.translation, x, y, z, w]
            values += [edge.information[i, j] for i, j in _UPPER]
            stream.write(
                f"{EDGE_TAG} {edge.vertex1} {edge.vertex2} "
                + " ".join(_format(v) for v in values)
                + "\n"
            )

    def total_chi2(self) -> float:
        """Sum of e^T Omega e over all edges."""
        total = 0.0
        for edge in self.edges:
            e = edge.error(self)
            total += float(e @ edge.information @ e)
        return total

    def _linearize(self, edge: PoseEdge):
        e = edge.error(self)
        j = jr_inv(e)
        adj = self._vertex(edge.vertex2).estimate.inverse().adjoint()
        return e, -j @ adj, j @ adj

    def _build_system(self, index: dict[int, int]):
        n = 6 * len(index)
        rows, cols, data = [], [], []
        b = np.zeros(n)
        for edge in self.edges:
            e, ji, jj = self._linearize(edge)
            omega = edge.information
            blocks = [(index.get(edge.vertex1), ji), (index.get(edge.vertex2), jj)]
            for ka, ja in blocks:
                if ka is None:
                    continue
                jt_omega = ja.T @ omega
                b[6 * ka : 6 * ka + 6] += jt_omega @ e
                for kb, jb in blocks:
                    if kb is None:
                        continue
                    rows.append(_BLOCK_ROWS + 6 * ka)
                    cols.append(_BLOCK_COLS + 6 * kb)
                    data.append((jt_omega @ jb).ravel())
        if data:
            h = coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(n, n),
            ).tocsc()
        else:
            h = coo_matrix((n, n)).tocsc()
        return h, b

    def _apply(self, dx: np.ndarray, free: list[int]) -> None:
        for k, vid in enumerate(free):
            vertex = self.vertices[vid]
            vertex.estimate = SE3.exp(dx[6 * k : 6 * k + 6]) * vertex.estimate

    def optimize(self, iterations: int = 30) -> list[float]:
        """Levenberg-Marquardt over the free vertices; returns chi2 after each iteration."""
        free = [vid for vid, v in self.vertices.items() if not v.fixed]
        if not free or not self.edges:
            return []
        index = {vid: k for k, vid in enumerate(free)}
        n = 6 * len(free)
        chi2 = self.total_chi2()
        lam: float | None = None
        nu = 2.0
        history: list[float] = []
        for iteration in range(iterations):
            h, b = self._build_system(index)
            if lam is None:
                lam = _LM_TAU * max(float(h.diagonal().max()), 1e-12)
            accepted = False
            for _ in range(_LM_MAX_TRIES):
                damped = (h + lam * identity(n, format="csc")).tocsc()
                dx = np.asarray(spsolve(damped, -b)).reshape(-1)
                if np.all(np.isfinite(dx)):
                    backup = {vid: self.vertices[vid].estimate for vid in free}
                    self._apply(dx, free)
                    chi2_new = self.total_chi2()
                    scale = float(dx @ (lam * dx - b)) + 1e-3
                    rho = (chi2 - chi2_new) / scale
                    if np.isfinite(chi2_new) and rho > 0:
                        chi2 = chi2_new
                        alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, 2.0 / 3.0)
                        lam *= max(1.0 / 3.0, alpha)
                        nu = 2.0
                        accepted = True
                        break
                    for vid, estimate in backup.items():
                        self.vertices[vid].estimate = estimate
                lam *= nu
                nu *= 2.0
            if not accepted:
                break
            history.append(chi2)
            if self.verbose:
                print(f"iteration= {iteration}\t chi2= {chi2:g}\t lambda= {lam:g}")
        return history


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="pose-graph",
        description="Optimise an SE3 pose graph stored in the g2o format.",
    )
    parser.add_argument("graph", help="input .g2o file")
    parser.add_argument("-o", "--output", default=DEFAULT_OUTPUT)
    parser.add_argument("--iterations", type=int, default=30)
    args = parser.parse_args(argv)

    try:
        with open(args.graph, encoding="utf-8") as fh:
            graph = PoseGraph.load(fh)
    except OSError:
        print(f"file {args.graph} does not exist.")
        return 1
    except ValueError as exc:
        print(f"invalid graph: {exc}", file=sys.stderr)
        return 1

    graph.verbose = True
    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("optimizing ...")
    graph.optimize(args.iterations)
    print("saving optimization results ...")
    with open(args.output, "w", encoding="utf-8") as fh:
        graph.save(fh)
    return 0