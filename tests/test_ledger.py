"""Tests for epispread.ledger: incremental rate bookkeeping."""

import numpy as np
import pytest

from epispread.config import TransmissionSection
from epispread.kernel import TransmissionKernel
from epispread.ledger import RateLedger, class_parameters
from epispread.population import HostPopulation
from epispread.types import (
    NOT_SET,
    HostStatus,
    InvariantViolation,
    KernelShape,
    ModelType,
)


def _ledger(x, y, classes, model=ModelType.SIS, max_generation=3,
            shape=KernelShape.FLAT, scale=0.5, power=1.0, **rates):
    pop = HostPopulation.from_arrays(x, y, classes)
    kernel = TransmissionKernel(pop, shape=shape, scale=scale, power=power)
    tr = TransmissionSection(**rates)
    return RateLedger(pop, kernel, tr, max_generation=max_generation, model=model)


def _unit_pair(model=ModelType.SIS, max_generation=3):
    """Two class-1 hosts, flat kernel, θ = ρ = μ = 1."""
    return _ledger([0.0, 3.0], [0.0, 4.0], [1, 1], model=model, max_generation=max_generation,
                   theta_one=1.0, rho_one=1.0, mu_one=1.0)


def _grid(n_side=4, **kwargs):
    xs, ys = np.meshgrid(np.arange(n_side, dtype=float), np.arange(n_side, dtype=float))
    classes = np.where(np.arange(n_side * n_side) % 3 == 0, 2, 1)
    defaults = dict(theta_one=0.8, theta_two=0.3, rho_one=0.6, rho_two=1.1, mu_one=1.0, mu_two=0.5)
    defaults.update(kwargs.pop('rates', {}))
    return _ledger(xs.ravel(), ys.ravel(), classes, shape=KernelShape.POWER_EXPONENTIAL,
                   scale=1.5, power=1.0, **kwargs, **defaults)


# ── parameters ────────────────────────────────────────────────────────

class TestClassParameters:
    def test_per_class_lookup(self):
        tr = TransmissionSection(theta_one=0.1, theta_two=0.2, rho_one=0.3,
                                 rho_two=0.4, mu_one=0.5, mu_two=0.6)
        theta, rho, mu = class_parameters(tr, np.array([1, 2, 2], dtype=np.int8))
        np.testing.assert_allclose(theta, [0.1, 0.2, 0.2])
        np.testing.assert_allclose(rho, [0.3, 0.4, 0.4])
        np.testing.assert_allclose(mu, [0.5, 0.6, 0.6])


# ── infection ─────────────────────────────────────────────────────────

class TestInfect:
    def test_initial_state(self):
        ledger = _unit_pair()
        assert ledger.count(HostStatus.SUSCEPTIBLE) == 2
        assert ledger.total_rate == 0.0
        np.testing.assert_array_equal(ledger.rates, 0.0)
        np.testing.assert_array_equal(ledger.generation, NOT_SET)

    def test_seed_on_unit_pair(self):
        """Seeding host 0 gives host 1 rate θρk = 1 and TotalRate μ + 1 = 2."""
        ledger = _unit_pair()
        entry = ledger.infect(0, 0.0)
        assert entry == 0
        assert ledger.rates[1] == pytest.approx(1.0)
        assert ledger.rates[0] == pytest.approx(1.0)
        assert ledger.total_rate == pytest.approx(2.0)
        assert ledger.status[0] == HostStatus.INFECTED
        assert ledger.generation[0] == 0
        assert ledger.log[0].host_id == 0 and ledger.log[0].is_open

    def test_generation_increments(self):
        ledger = _unit_pair()
        ledger.infect(0, 0.0)
        ledger.infect(1, 0.4, infector=0)
        assert ledger.generation[1] == 1
        assert ledger.log[1].generation == 1
        assert ledger.log[1].infect_time == 0.4

    def test_infect_non_susceptible_raises(self):
        ledger = _unit_pair()
        ledger.infect(0, 0.0)
        with pytest.raises(InvariantViolation) as excinfo:
            ledger.infect(0, 1.0)
        assert excinfo.value.generation == 0
        assert excinfo.value.time == 1.0

    def test_infector_must_be_infected(self):
        ledger = _unit_pair()
        with pytest.raises(InvariantViolation):
            ledger.infect(1, 0.5, infector=0)

    def test_infector_past_cutoff_raises(self):
        ledger = _unit_pair(max_generation=0)
        ledger.infect(0, 0.0)
        with pytest.raises(InvariantViolation):
            ledger.infect(1, 0.5, infector=0)

    def test_cutoff_host_exerts_no_pressure(self):
        """max_generation = 0: seeds recover at μ but infect nobody."""
        ledger = _unit_pair(max_generation=0)
        ledger.infect(0, 0.0)
        assert ledger.rates[1] == 0.0
        assert ledger.total_rate == pytest.approx(1.0)
        assert ledger.outgoing_theta(0) == 0.0
        ids, contributions = ledger.infection_pressure(1)
        np.testing.assert_array_equal(ids, [0])
        np.testing.assert_array_equal(contributions, [0.0])


# ── recovery ──────────────────────────────────────────────────────────

class TestRecover:
    def test_sis_seed_recovers_to_zero(self):
        """Lone seed recovering under SIS: susceptible again with rate exactly 0."""
        ledger = _unit_pair(model=ModelType.SIS)
        ledger.infect(0, 0.0)
        ledger.recover(0, 0.7)
        assert ledger.status[0] == HostStatus.SUSCEPTIBLE
        assert ledger.rates[0] == 0.0
        assert ledger.rates[1] == 0.0
        ledger.snap_underflow()
        assert ledger.total_rate == 0.0
        assert ledger.log[0].removal_time == 0.7
        assert ledger.entry_index[0] == NOT_SET

    def test_sis_recovered_host_feels_other_infectives(self):
        ledger = _unit_pair(model=ModelType.SIS)
        ledger.infect(0, 0.0)
        ledger.infect(1, 0.2, infector=0)
        ledger.recover(0, 0.5)
        # host 0 is susceptible again and host 1 (generation 1) still infects it
        assert ledger.status[0] == HostStatus.SUSCEPTIBLE
        assert ledger.rates[0] == pytest.approx(1.0)
        assert ledger.total_rate == pytest.approx(2.0)
        ledger.assert_consistent()

    def test_sir_removes(self):
        ledger = _unit_pair(model=ModelType.SIR)
        ledger.infect(0, 0.0)
        ledger.recover(0, 1.0)
        assert ledger.status[0] == HostStatus.REMOVED
        assert ledger.rates[0] == 0.0
        assert ledger.count(HostStatus.REMOVED) == 1
        ledger.assert_consistent()

    def test_sir_removed_host_cannot_be_infected(self):
        ledger = _unit_pair(model=ModelType.SIR)
        ledger.infect(0, 0.0)
        ledger.recover(0, 1.0)
        with pytest.raises(InvariantViolation):
            ledger.infect(0, 2.0)

    def test_recover_susceptible_raises(self):
        ledger = _unit_pair()
        with pytest.raises(InvariantViolation):
            ledger.recover(1, 0.3)

    def test_recover_reduces_neighbour_rates(self):
        ledger = _unit_pair()
        ledger.infect(0, 0.0)
        ledger.recover(0, 0.2)
        np.testing.assert_array_equal(ledger.rates, 0.0)


# ── consistency ───────────────────────────────────────────────────────

class TestConsistency:
    @pytest.mark.parametrize("model", [ModelType.SIS, ModelType.SIR])
    def test_random_event_sequence_stays_consistent(self, model):
        """Incremental rates agree with a full re-derivation after every event."""
        ledger = _grid(5, model=model, max_generation=2)
        rng = np.random.default_rng(11)
        ledger.infect(0, 0.0)
        ledger.infect(12, 0.0)
        t = 0.0
        for _ in range(200):
            t += 0.01
            infected = np.flatnonzero(ledger.status == HostStatus.INFECTED)
            if infected.size == 0:
                break
            susceptible = np.flatnonzero(ledger.status == HostStatus.SUSCEPTIBLE)
            active = infected[ledger.generation[infected] < ledger.max_generation]
            if rng.random() < 0.5 and susceptible.size and active.size:
                ledger.infect(int(rng.choice(susceptible)), t, infector=int(rng.choice(active)))
            else:
                ledger.recover(int(rng.choice(infected)), t)
            ledger.snap_underflow()
            assert ledger.check_rates().size == 0
            assert (ledger.rates >= 0.0).all()
            assert ledger.total_rate >= 0.0
            if ledger.total_rate > 0.0:
                assert ledger.total_rate == pytest.approx(ledger.rates.sum(), abs=1e-9)
            ledger.assert_consistent(time=t)

    def test_expected_rates_by_status(self):
        ledger = _grid(3, model=ModelType.SIR)
        ledger.infect(4, 0.0)
        expected = ledger.expected_rates()
        assert expected[4] == pytest.approx(ledger.mu[4])
        others = np.arange(9) != 4
        weights = ledger.kernel.column(4)
        np.testing.assert_allclose(expected[others],
                                   ledger.theta[4] * ledger.rho[others] * weights[others])
        assert ledger.recompute_rate(0) == pytest.approx(expected[0])

    def test_assert_consistent_detects_drift(self):
        ledger = _unit_pair()
        ledger.infect(0, 0.0)
        ledger.rates[1] += 0.5
        assert list(ledger.check_rates()) == [1]
        with pytest.raises(InvariantViolation, match="inconsistent"):
            ledger.assert_consistent(time=0.1)

    def test_assert_consistent_detects_total_drift(self):
        ledger = _unit_pair()
        ledger.infect(0, 0.0)
        ledger.total_rate += 0.1
        with pytest.raises(InvariantViolation, match="TotalRate"):
            ledger.assert_consistent()

    def test_assert_consistent_detects_collapsed_total(self):
        ledger = _ledger([0.0, 1.0, 2.0], [0.0] * 3, [1, 1, 1],
                         theta_one=1.0, rho_one=1.0, mu_one=1.0)
        ledger.infect(0, 0.0)
        assert float(ledger.rates.sum()) == pytest.approx(3.0)
        ledger.total_rate = 0.0
        with pytest.raises(InvariantViolation, match="TotalRate collapsed"):
            ledger.assert_consistent()

    def test_assert_consistent_accepts_snapped_total(self):
        ledger = _unit_pair(max_generation=0)
        ledger.infect(0, 0.0)
        ledger.recover(0, 1.0)
        ledger.total_rate = 0.0
        ledger.assert_consistent()

    def test_snap_underflow(self):
        ledger = _unit_pair()
        ledger.total_rate = 5e-6
        ledger.snap_underflow()
        assert ledger.total_rate == 0.0
        ledger.total_rate = 2e-5
        ledger.snap_underflow()
        assert ledger.total_rate == 2e-5

    def test_uncached_kernel_gives_same_rates(self):
        pop = HostPopulation.from_arrays([0.0, 1.0, 2.5, 0.3], [0.0, 0.2, 1.0, 2.0], [1, 2, 1, 2])
        tr = TransmissionSection(theta_one=0.7, theta_two=0.4, rho_one=0.9, rho_two=0.6)
        ledgers = [
            RateLedger(pop, TransmissionKernel(pop, cache=cache), tr, max_generation=3,
                       model=ModelType.SIS)
            for cache in (True, False)
        ]
        for ledger in ledgers:
            ledger.infect(1, 0.0)
            ledger.infect(3, 0.1, infector=1)
            ledger.recover(1, 0.3)
        np.testing.assert_allclose(ledgers[0].rates, ledgers[1].rates, rtol=1e-12)
        assert ledgers[0].total_rate == pytest.approx(ledgers[1].total_rate, rel=1e-12)

    def test_mismatched_kernel_rejected(self):
        pop = HostPopulation.from_arrays([0.0, 1.0], [0.0, 0.0], [1, 1])
        other = HostPopulation.from_arrays([0.0], [0.0], [1])
        with pytest.raises(ValueError):
            RateLedger(pop, TransmissionKernel(other), TransmissionSection(),
                       max_generation=1, model=ModelType.SIS)
