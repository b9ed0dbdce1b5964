import threading

import pytest

from escrow_service.config.production import RoutingDefaults
from escrow_service.config.routing import RoutingConfig, RoutingParameters
from escrow_service.errors import ValidationError


def test_defaults():
    assert RoutingConfig().to_dict() == {
        'minMixingRounds': 3,
        'maxMixingRounds': 7,
        'minDelayMinutes': 30,
        'maxDelayMinutes': 180,
        'maxWalletBalance': 10_000_000,
        'cycleIntervalHours': 6,
        'enableAutomatedMixing': True,
        'completionDelaySeconds': 60,
    }


def test_from_defaults_reads_environment(monkeypatch):
    monkeypatch.setenv('ROUTING_MAX_WALLET_BALANCE', '500')
    monkeypatch.setenv('ROUTING_ENABLE_AUTOMATED_MIXING', 'false')

    config = RoutingConfig.from_defaults(RoutingDefaults())

    assert config.current.max_wallet_balance == 500
    assert config.current.enable_automated_mixing is False


def test_update_merges_partial_changes():
    config = RoutingConfig()

    updated = config.update({'maxDelayMinutes': 240})

    assert updated.max_delay_minutes == 240
    assert updated.min_delay_minutes == 30
    assert config.current is updated


@pytest.mark.parametrize('changes', [
    ['minMixingRounds'],
    {'minMixingRounds': 8},
    {'minDelayMinutes': 200},
    {'maxWalletBalance': 0},
    {'cycleIntervalHours': 0},
    {'completionDelaySeconds': -1},
    {'maxMixingRounds': '7'},
    {'maxMixingRounds': 7.5},
    {'enableAutomatedMixing': 'yes'},
    {'mixingFee': 1},
])
def test_invalid_update_is_rejected_whole(changes):
    config = RoutingConfig()
    before = config.current

    with pytest.raises(ValidationError):
        config.update(changes)

    assert config.current is before


def test_invalid_initial_parameters():
    with pytest.raises(ValidationError):
        RoutingConfig(RoutingParameters(min_mixing_rounds=10, max_mixing_rounds=2))


def test_snapshot_is_never_half_applied():
    config = RoutingConfig()
    stop = threading.Event()
    observed = []

    def writer():
        for _ in range(200):
            config.update({'minMixingRounds': 5, 'maxMixingRounds': 5})
            config.update({'minMixingRounds': 3, 'maxMixingRounds': 7})
        stop.set()

    def reader():
        while not stop.is_set():
            current = config.current
            observed.append((current.min_mixing_rounds, current.max_mixing_rounds))

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert set(observed) <= {(5, 5), (3, 7)}
