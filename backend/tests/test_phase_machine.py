"""
Phase machine and mode strategy tests.

Covers the seller-mode trigger/count ladder, customer-mode pitching,
monotonicity under arbitrary input and the give-up / signal rules.
"""

import random

import pytest

from salestrainer.agents.modes import CustomerMode, LexicalSignals, SellerMode, strategy_for
from salestrainer.agents.phase_machine import PhaseMachine
from salestrainer.agents.states import Difficulty, Phase, Role, SessionOutcome, phase_rank

from conftest import customer_config, seller_config


class TestSellerPhases:

    def test_trigger_phrase_starts_discovery(self):
        machine = PhaseMachine(SellerMode(seller_config()))
        assert machine.on_utterance(Role.USER, "Hello there", 1) is None
        assert machine.phase == Phase.GREETING

        assert machine.on_utterance(Role.USER, "OK, Sell me a PEN then", 2) == Phase.DISCOVERY
        assert machine.phase == Phase.DISCOVERY

    def test_custom_trigger_phrase(self):
        machine = PhaseMachine(SellerMode(seller_config(trigger_phrase="show me the pen")))
        assert machine.on_utterance(Role.USER, "sell me a pen", 1) is None
        assert machine.on_utterance(Role.USER, "Show me the pen!", 2) == Phase.DISCOVERY

    def test_user_count_ladder(self):
        machine = PhaseMachine(SellerMode(seller_config()))
        machine.on_utterance(Role.USER, "sell me a pen", 1)
        assert machine.on_utterance(Role.USER, "I write a lot", 2) is None
        assert machine.on_utterance(Role.USER, "mostly contracts", 3) == Phase.POSITIONING
        assert machine.on_utterance(Role.USER, "sounds nice", 4) is None
        assert machine.on_utterance(Role.USER, "what does it cost", 5) == Phase.CLOSING
        assert machine.history == [Phase.GREETING, Phase.DISCOVERY, Phase.POSITIONING, Phase.CLOSING]

    def test_late_trigger_applies_count_check_on_same_utterance(self):
        machine = PhaseMachine(SellerMode(seller_config()))
        for count in (1, 2, 3):
            assert machine.on_utterance(Role.USER, "hello", count) is None
        assert machine.on_utterance(Role.USER, "ok, sell me a pen", 4) == Phase.POSITIONING
        assert machine.phase == Phase.POSITIONING
        assert machine.on_utterance(Role.USER, "ok", 5) == Phase.CLOSING

    def test_very_late_trigger_still_one_count_step(self):
        machine = PhaseMachine(SellerMode(seller_config()))
        assert machine.on_utterance(Role.USER, "sell me a pen", 6) == Phase.POSITIONING
        assert machine.on_utterance(Role.USER, "ok", 7) == Phase.CLOSING

    def test_assistant_messages_never_move_seller_phase(self):
        machine = PhaseMachine(SellerMode(seller_config()))
        assert machine.on_utterance(Role.ASSISTANT, "sell me a pen", 0) is None
        assert machine.phase == Phase.GREETING


class TestCustomerPhases:

    def test_first_user_message_starts_pitching(self):
        machine = PhaseMachine(CustomerMode(customer_config(Difficulty.HARD)))
        assert machine.on_utterance(Role.ASSISTANT, "Alright, sell me this pen", 0) is None
        assert machine.on_utterance(Role.USER, "This pen changes lives", 1) == Phase.PITCHING
        assert machine.on_utterance(Role.USER, "Trust me", 2) is None
        assert machine.phase == Phase.PITCHING


class TestMonotonicity:

    def test_completed_is_final(self):
        machine = PhaseMachine(SellerMode(seller_config()))
        machine.on_utterance(Role.USER, "sell me a pen", 1)
        assert machine.complete() is True
        assert machine.complete() is False
        assert machine.on_utterance(Role.USER, "sell me a pen", 9) is None
        assert machine.transition_to(Phase.CLOSING) is False
        assert machine.phase == Phase.COMPLETED

    def test_no_regression_or_sideways_moves(self):
        machine = PhaseMachine(SellerMode(seller_config()))
        machine.transition_to(Phase.POSITIONING)
        assert machine.transition_to(Phase.DISCOVERY) is False
        assert machine.transition_to(Phase.PITCHING) is False
        assert machine.transition_to(Phase.POSITIONING) is False
        assert machine.phase == Phase.POSITIONING

    @pytest.mark.parametrize("seed", range(20))
    def test_random_event_sequences_never_regress(self, seed):
        rng = random.Random(seed)
        config = seller_config() if seed % 2 else customer_config()
        machine = PhaseMachine(strategy_for(config))
        utterances = ["sell me a pen", "hello", "yes", "bye", "tell me more", "i'll take it"]
        user_count = 0
        for _ in range(40):
            role = rng.choice([Role.USER, Role.ASSISTANT])
            if role == Role.USER:
                user_count += 1
            if rng.random() < 0.05:
                machine.complete()
            machine.on_utterance(role, rng.choice(utterances), user_count)

        ranks = [phase_rank(p) for p in machine.history]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == len(ranks)


class TestModePolicies:

    def test_seller_signals(self):
        mode = SellerMode(seller_config())
        signals = mode.signals(Role.USER, "No thanks, bye")
        assert signals.exit_signal and not signals.buy_signal
        assert mode.signals(Role.USER, "Deal, I'll take it").buy_signal
        assert not mode.signals(Role.ASSISTANT, "bye").any

    def test_seller_thresholds(self):
        mode = SellerMode(seller_config())
        assert mode.threshold(LexicalSignals(exit_signal=True)) == 60
        assert mode.threshold(LexicalSignals(buy_signal=True)) == 80
        assert mode.threshold(LexicalSignals()) == 80

    def test_seller_classifies_only_when_eligible(self):
        mode = SellerMode(seller_config())
        none = LexicalSignals()
        exit_ = LexicalSignals(exit_signal=True)
        assert not mode.should_classify(Role.USER, Phase.GREETING, exit_)
        assert not mode.should_classify(Role.USER, Phase.DISCOVERY, none)
        assert mode.should_classify(Role.USER, Phase.DISCOVERY, exit_)
        assert mode.should_classify(Role.USER, Phase.CLOSING, none)
        assert not mode.should_classify(Role.ASSISTANT, Phase.CLOSING, none)
        assert not mode.should_classify(Role.USER, Phase.COMPLETED, exit_)

    def test_customer_classifies_assistant_turns_after_greeting(self):
        mode = CustomerMode(customer_config())
        assert mode.threshold(LexicalSignals(exit_signal=True)) == 80
        assert not mode.should_classify(Role.ASSISTANT, Phase.GREETING, LexicalSignals())
        assert mode.should_classify(Role.ASSISTANT, Phase.PITCHING, LexicalSignals())
        assert not mode.should_classify(Role.USER, Phase.PITCHING, LexicalSignals())

    def test_customer_give_up(self):
        mode = CustomerMode(customer_config())
        assert mode.give_up(Role.USER, "Forget it, I give up", Phase.PITCHING) == CustomerMode.GIVE_UP_NOTICE
        assert mode.give_up(Role.ASSISTANT, "goodbye", Phase.PITCHING) is None
        assert mode.give_up(Role.USER, "goodbye", Phase.COMPLETED) is None
        assert SellerMode(seller_config()).give_up(Role.USER, "i give up", Phase.CLOSING) is None

    def test_fallback_notices(self):
        assert SellerMode(seller_config()).notice_for(SessionOutcome.SALE_MADE)[0] == "SALE MADE!"
        assert CustomerMode(customer_config()).notice_for(SessionOutcome.SALE_MADE)[0] == "YOU MADE THE SALE!"
        assert CustomerMode(customer_config()).notice_for(SessionOutcome.NO_SALE)[0] == "NO SALE"
