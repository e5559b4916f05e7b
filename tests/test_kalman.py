"""
Pod Estimation — Filter Core Tests
"""
import logging

import numpy as np
import pytest

from pod_estimation import (
    DimensionMismatchError,
    FilterConfig,
    KalmanMultivariate,
    NotConfiguredError,
    SingularMatrixError,
    build_constant_velocity,
)


def make_scalar_filter(adaptive=False, window_size=20):
    """n = m = 1 random-walk filter."""
    kf = KalmanMultivariate(dim_x=1, dim_z=1, adaptive=adaptive, window_size=window_size)
    kf.set_models(A=[[1.0]], Q=[[0.01]], H=[[1.0]], R=[[0.1]])
    kf.set_initial([0.0], [[1.0]])
    return kf


def make_planar_filter(window_size=5, **kwargs):
    """n = m = 2 identity-observed filter."""
    config = FilterConfig(dim_x=2, dim_z=2, adaptive=True, window_size=window_size, **kwargs)
    kf = KalmanMultivariate(config=config)
    kf.set_models(A=np.eye(2), Q=np.eye(2) * 0.01, H=np.eye(2), R=np.eye(2) * 0.5)
    kf.set_initial(np.zeros(2), np.eye(2))
    return kf


class TestConstruction:
    """Test filter construction."""

    def test_keyword_construction(self):
        """Test construction from keyword arguments."""
        kf = KalmanMultivariate(dim_x=4, dim_z=2, dim_u=1, adaptive=True, window_size=7)
        assert kf.dim_x == 4
        assert kf.dim_z == 2
        assert kf.dim_u == 1
        assert kf.adaptive
        assert kf.config.window_size == 7
        assert kf.iteration == 0

    def test_config_object(self):
        """Test construction from a FilterConfig."""
        cfg = FilterConfig(dim_x=3, dim_z=1, adaptive=False)
        kf = KalmanMultivariate(config=cfg)
        assert kf.config is cfg
        assert not kf.adaptive
        assert kf.window == ()
        assert kf.sample_covariance is None

    def test_dict_config(self):
        """Test construction from a dict config."""
        kf = KalmanMultivariate(config={"dim_x": 2, "dim_z": 2, "adaptive": True, "window_size": 3})
        assert kf.adaptive
        assert kf.config.window_size == 3

    def test_initial_gain_is_zero(self):
        """Test that the gain starts at zero."""
        kf = KalmanMultivariate(dim_x=3, dim_z=2)
        assert np.array_equal(kf.gain, np.zeros((3, 2)))

    def test_cycle_before_configuration(self):
        """Test that an unconfigured filter refuses to run."""
        kf = KalmanMultivariate(dim_x=1, dim_z=1)
        with pytest.raises(NotConfiguredError):
            kf.filter([1.0])

    def test_control_without_B(self):
        """Test that a control input needs B."""
        kf = KalmanMultivariate(dim_x=1, dim_z=1, dim_u=1)
        kf.set_models(A=[[1.0]], Q=[[0.01]], H=[[1.0]], R=[[0.1]])
        kf.set_initial([0.0], [[1.0]])
        with pytest.raises(NotConfiguredError):
            kf.filter([1.0], u=[0.5])


class TestScalarConvergence:
    """Non-adaptive n = m = 1 scenario with a constant measurement."""

    def test_converges_monotonically(self):
        """Test convergence toward a constant measurement."""
        kf = make_scalar_filter()

        xs, ps = [], []
        for _ in range(20):
            kf.filter([1.0])
            xs.append(kf.state_estimate[0])
            ps.append(kf.state_covariance[0, 0])

        # x approaches 1.0 from below without overshoot
        assert all(b >= a for a, b in zip(xs, xs[1:]))
        assert all(x <= 1.0 for x in xs)
        assert abs(xs[-1] - 1.0) < 0.01

        # P never grows and strictly shrinks while converging
        assert all(b <= a for a, b in zip(ps, ps[1:]))
        assert all(b < a for a, b in zip(ps[:8], ps[1:9]))

    def test_first_cycle_values(self):
        """Test first-cycle gain, state and covariance."""
        kf = make_scalar_filter()
        kf.filter([1.0])

        P_pred = 1.0 + 0.01
        K = P_pred / (P_pred + 0.1)
        assert np.isclose(kf.gain[0, 0], K)
        assert np.isclose(kf.state_estimate[0], K * 1.0)
        assert np.isclose(kf.state_covariance[0, 0], (1 - K) * P_pred)
        assert np.isclose(kf.innovation[0], 1.0)
        assert np.isclose(kf.innovation_covariance[0, 0], P_pred + 0.1)
        assert kf.iteration == 1

    def test_scalar_measurement_accepted(self):
        """Test scalar measurement for m = 1."""
        kf = make_scalar_filter()
        kf.filter(1.0)
        assert kf.iteration == 1


class TestControlInput:
    """Test the optional control term."""

    def test_control_shifts_prediction(self):
        """Test that the control term moves the state only."""
        A, Q = build_constant_velocity(dt=0.1, q=0.5)
        B = np.array([[0.005], [0.1]])
        H = np.array([[1.0, 0.0]])

        with_u = KalmanMultivariate(dim_x=2, dim_z=1, dim_u=1)
        without_u = KalmanMultivariate(dim_x=2, dim_z=1, dim_u=1)
        for kf in (with_u, without_u):
            kf.set_models(A, Q, H, [[0.25]], B=B)
            kf.set_initial([0.0, 0.0], np.eye(2))

        with_u.filter([0.0], u=[2.0])
        without_u.filter([0.0])

        assert not np.allclose(with_u.state_estimate, without_u.state_estimate)
        # Control does not affect the covariance path
        assert np.allclose(with_u.state_covariance, without_u.state_covariance)

    def test_run_cycle_alias(self):
        """Test the run_cycle alias."""
        kf = make_scalar_filter()
        kf.run_cycle([1.0])
        assert kf.iteration == 1


class TestDimensionGuard:
    """Wrong-length inputs must not mutate the filter."""

    def test_wrong_measurement_length(self):
        """Test that a wrong-length z leaves the filter untouched."""
        kf = make_planar_filter()
        kf.filter([0.1, -0.2])
        before = kf.snapshot()
        window_before = kf.window
        C_before = kf.sample_covariance

        with pytest.raises(DimensionMismatchError) as exc_info:
            kf.filter([1.0, 2.0, 3.0])

        assert exc_info.value.name == "z"
        assert exc_info.value.expected == (2,)
        assert kf.iteration == before.iteration
        assert np.array_equal(kf.state_estimate, before.x)
        assert np.array_equal(kf.state_covariance, before.P)
        assert len(kf.window) == len(window_before)
        assert np.array_equal(kf.sample_covariance, C_before)

    def test_wrong_control_length(self):
        """Test that a wrong-length u is rejected."""
        kf = KalmanMultivariate(dim_x=2, dim_z=1, dim_u=1)
        A, Q = build_constant_velocity(dt=0.1, q=0.5)
        kf.set_models(A, Q, [[1.0, 0.0]], [[0.25]], B=[[0.0], [0.1]])
        kf.set_initial([0.0, 0.0], np.eye(2))

        with pytest.raises(DimensionMismatchError):
            kf.filter([0.0], u=[1.0, 2.0])
        assert kf.iteration == 0

    def test_control_on_filter_without_control(self):
        """Test u on a filter without control dimension."""
        kf = make_scalar_filter()
        with pytest.raises(DimensionMismatchError):
            kf.filter([1.0], u=[1.0])

    def test_non_finite_measurement(self):
        """Test that NaN measurements are rejected."""
        kf = make_scalar_filter()
        with pytest.raises(ValueError):
            kf.filter([np.nan])
        assert kf.iteration == 0


class TestSingularInnovation:
    """Singular S must fail the cycle without touching the estimate."""

    def make_degenerate(self, adaptive=False):
        kf = KalmanMultivariate(dim_x=2, dim_z=1, adaptive=adaptive, window_size=3)
        kf.set_models(A=np.eye(2), Q=np.zeros((2, 2)), H=np.zeros((1, 2)), R=[[0.0]])
        kf.set_initial([1.0, 2.0], np.zeros((2, 2)))
        return kf

    def test_raises_singular(self):
        """Test that a zero S raises SingularMatrixError."""
        kf = self.make_degenerate()
        with pytest.raises(SingularMatrixError) as exc_info:
            kf.filter([1.0])
        assert exc_info.value.name == "S"

    def test_state_unchanged(self):
        """Test that a singular cycle leaves x and P unchanged."""
        kf = self.make_degenerate()
        with pytest.raises(SingularMatrixError):
            kf.filter([1.0])

        assert kf.iteration == 0
        assert np.array_equal(kf.state_estimate, [1.0, 2.0])
        assert np.array_equal(kf.state_covariance, np.zeros((2, 2)))
        assert np.all(np.isfinite(kf.state_estimate))
        assert np.all(np.isfinite(kf.state_covariance))
        assert kf.innovation is None

    def test_adaptive_window_rolled_back(self):
        """Test that a singular cycle rolls back the innovation window."""
        kf = self.make_degenerate(adaptive=True)
        with pytest.raises(SingularMatrixError):
            kf.filter([1.0])
        assert kf.window == ()
        assert np.array_equal(kf.sample_covariance, np.zeros((1, 1)))

    def test_recovers_after_failure(self):
        """Test that the filter runs again once S is invertible."""
        kf = self.make_degenerate()
        with pytest.raises(SingularMatrixError):
            kf.filter([1.0])

        kf.update_R([[0.5]])
        kf.filter([1.0])
        assert kf.iteration == 1

    def test_is_linalg_error(self):
        """Test that SingularMatrixError is a LinAlgError."""
        kf = self.make_degenerate()
        with pytest.raises(np.linalg.LinAlgError):
            kf.filter([1.0])

    def test_skipped_cycle_logged(self, caplog):
        """Test that a skipped singular cycle emits a warning."""
        kf = self.make_degenerate()
        with caplog.at_level(logging.WARNING, logger="pod_estimation.kalman"):
            with pytest.raises(SingularMatrixError):
                kf.filter([1.0])
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "Cycle 1 skipped" in warnings[0].getMessage()


class TestCovariancePrediction:
    """Covariance propagation checks."""

    def test_zero_process_noise_prediction(self):
        """With Q = 0 and no information in z, P equals A P A'."""
        A = np.array([[1.0, 0.1], [0.0, 1.0]])
        P0 = np.array([[2.0, 0.3], [0.3, 1.0]])
        kf = KalmanMultivariate(dim_x=2, dim_z=1)
        # H = 0 makes K = 0, so the correction is a no-op
        kf.set_models(A, np.zeros((2, 2)), np.zeros((1, 2)), [[1.0]])
        kf.set_initial([0.0, 1.0], P0)

        kf.filter([0.0])

        assert np.array_equal(kf.state_covariance, A @ P0 @ A.T)
        assert np.allclose(kf.state_estimate, A @ np.array([0.0, 1.0]))

    def test_update_A_takes_effect(self):
        """Test that update_A is used by the next prediction."""
        kf = make_scalar_filter()
        kf.update_A([[2.0]])
        kf.set_initial([1.0], [[1.0]])
        kf.filter([2.0])
        # Perfect prediction: zero innovation
        assert np.isclose(kf.innovation[0], 0.0)

    def test_symmetrize_option(self):
        """Test that symmetrize keeps P exactly symmetric."""
        kf = make_planar_filter(symmetrize=True)
        rng = np.random.default_rng(1)
        for _ in range(10):
            kf.filter(rng.normal(0.0, 1.0, 2))
        P = kf.state_covariance
        assert np.array_equal(P, P.T)


class TestAccessors:
    """Accessors must return copies."""

    def test_state_estimate_is_copy(self):
        """Test that the state estimate is returned by copy."""
        kf = make_scalar_filter()
        kf.filter([1.0])
        x = kf.state_estimate
        x[0] = 1e6
        assert kf.state_estimate[0] != 1e6

    def test_covariance_is_copy(self):
        """Test that the covariance is returned by copy."""
        kf = make_scalar_filter()
        P = kf.get_state_covariance()
        P[0, 0] = -1.0
        assert kf.get_state_covariance()[0, 0] == 1.0

    def test_model_matrices_are_copies(self):
        """Test that model matrices are returned by copy."""
        kf = make_scalar_filter()
        Q = kf.Q
        Q[0, 0] = 99.0
        assert kf.Q[0, 0] == 0.01

    def test_snapshot(self):
        """Test snapshot contents."""
        kf = make_scalar_filter()
        kf.filter([1.0])
        snap = kf.snapshot()
        assert snap.iteration == 1
        assert snap.x.shape == (1,)
        assert np.allclose(snap.std(), np.sqrt(snap.P[0, 0]))

    def test_set_initial_does_not_alias(self):
        """Test that set_initial copies its inputs."""
        x0 = np.array([0.0])
        kf = KalmanMultivariate(dim_x=1, dim_z=1)
        kf.set_models([[1.0]], [[0.01]], [[1.0]], [[0.1]])
        kf.set_initial(x0, [[1.0]])
        x0[0] = 5.0
        assert kf.state_estimate[0] == 0.0


class TestProcessBatch:
    """Batch helper."""

    def test_batch_shapes(self):
        """Test process_batch output shapes."""
        kf = make_scalar_filter()
        x_hist, P_hist = kf.process_batch(np.ones(15))
        assert x_hist.shape == (15, 1)
        assert P_hist.shape == (15, 1, 1)
        assert kf.iteration == 15

    def test_batch_matches_loop(self):
        """Test that process_batch matches a manual loop."""
        rng = np.random.default_rng(7)
        zs = rng.normal(1.0, 0.3, (30, 2))

        batch = make_planar_filter()
        loop = make_planar_filter()
        x_hist, _ = batch.process_batch(zs)
        for z in zs:
            loop.filter(z)

        assert np.allclose(x_hist[-1], loop.state_estimate)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
