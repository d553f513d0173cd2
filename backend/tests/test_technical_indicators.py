"""
Unit tests for IndicatorEngine.
"""

import pytest

from fusion_trader.data_ingestor import build_price_history
from fusion_trader.technical_indicators import IndicatorEngine


class TestRSI:

    def test_flat_series_is_neutral(self):
        assert IndicatorEngine.calculate_rsi([100.0] * 30) == 50.0

    def test_short_history_is_neutral(self):
        assert IndicatorEngine.calculate_rsi([100.0, 101.0, 102.0]) == 50.0

    def test_strict_decline_is_zero(self):
        prices = [200.0 - i for i in range(30)]
        assert IndicatorEngine.calculate_rsi(prices) == 0.0

    def test_fourteen_equal_declines(self):
        prices = [100.0 - 2.0 * i for i in range(15)]
        avg_gain, avg_loss = 0.0, 2.0
        expected = 100 - 100 / (1 + avg_gain / avg_loss)
        assert IndicatorEngine.calculate_rsi(prices) == pytest.approx(expected)
        assert expected == 0.0

    def test_strict_rise_is_hundred(self):
        prices = [100.0 + i for i in range(30)]
        assert IndicatorEngine.calculate_rsi(prices) == 100.0

    def test_mixed_series_stays_in_range(self):
        prices = [100, 102, 101, 105, 103, 104, 99, 98, 101, 106, 104, 103, 107, 108, 105, 104]
        rsi = IndicatorEngine.calculate_rsi(prices)
        assert 0 < rsi < 100

    def test_non_positive_period_rejected(self):
        with pytest.raises(ValueError):
            IndicatorEngine.calculate_rsi([1.0, 2.0], period=0)


class TestMovingAverages:

    def test_ema_of_single_sample_is_that_sample(self):
        assert IndicatorEngine.calculate_ema([42.0], 12) == 42.0

    def test_ema_of_empty_series_is_zero(self):
        assert IndicatorEngine.calculate_ema([], 12) == 0.0

    def test_ema_weights_recent_prices(self):
        prices = [10.0] * 10 + [20.0]
        ema = IndicatorEngine.calculate_ema(prices, 3)
        # k = 0.5, seeded at 10
        assert ema == pytest.approx(15.0)

    def test_sma_falls_back_to_latest_price(self):
        assert IndicatorEngine.calculate_sma([1.0, 2.0, 3.0], 5) == 3.0

    def test_sma_uses_trailing_window(self):
        assert IndicatorEngine.calculate_sma([1.0, 2.0, 3.0, 4.0], 2) == pytest.approx(3.5)

    def test_inputs_are_not_mutated(self):
        prices = [5.0, 3.0, 8.0, 1.0, 9.0]
        original = list(prices)

        IndicatorEngine.calculate_sma(prices, 3)
        IndicatorEngine.calculate_ema(prices, 3)
        IndicatorEngine.calculate_bollinger_bands(prices, 3)
        IndicatorEngine.calculate_macd(prices)

        assert prices == original


class TestOscillatorsAndBands:

    def test_macd_flat_series_is_zero(self):
        macd = IndicatorEngine.calculate_macd([100.0] * 40)
        assert macd.macd == pytest.approx(0.0, abs=1e-9)
        assert macd.signal == pytest.approx(0.0, abs=1e-9)
        assert macd.histogram == pytest.approx(0.0, abs=1e-9)

    def test_macd_positive_on_uptrend(self):
        macd = IndicatorEngine.calculate_macd([100.0 + i for i in range(40)])
        assert macd.macd > 0

    def test_bollinger_flat_series_collapses(self):
        bands = IndicatorEngine.calculate_bollinger_bands([100.0] * 25)
        assert bands.upper == bands.middle == bands.lower == 100.0

    def test_bollinger_short_history_uses_trailing_stddev(self):
        bands = IndicatorEngine.calculate_bollinger_bands([1.0, 2.0, 3.0])

        # middle falls back to the latest price, width is the stddev of [1, 2, 3]
        assert bands.middle == 3.0
        assert bands.upper == pytest.approx(3.0 + 2 * (2 / 3) ** 0.5)
        assert bands.lower == pytest.approx(3.0 - 2 * (2 / 3) ** 0.5)

    def test_bollinger_envelope_is_symmetric(self):
        bands = IndicatorEngine.calculate_bollinger_bands([98.0, 102.0] * 10)
        assert bands.middle == pytest.approx(100.0)
        assert bands.upper - bands.middle == pytest.approx(bands.middle - bands.lower)
        assert bands.upper == pytest.approx(104.0)

    def test_stochastic_without_range_is_neutral(self):
        stochastic = IndicatorEngine.calculate_stochastic([100.0] * 20)
        assert stochastic.k == 50.0
        assert stochastic.d == 50.0

    def test_stochastic_close_at_high(self):
        stochastic = IndicatorEngine.calculate_stochastic([100.0 + i for i in range(20)])
        assert stochastic.k == pytest.approx(100.0)

    def test_stochastic_length_mismatch(self):
        with pytest.raises(ValueError):
            IndicatorEngine.calculate_stochastic([1.0, 2.0], highs=[1.0], lows=[1.0, 2.0])

    def test_volatility_of_flat_series_is_zero(self):
        assert IndicatorEngine.calculate_volatility([100.0] * 30) == 0.0

    def test_volatility_needs_two_samples(self):
        assert IndicatorEngine.calculate_volatility([100.0]) == 0.0


class TestIndicatorSet:

    def test_all_indicators_on_rising_history(self, rising_history):
        indicators = IndicatorEngine.calculate_all_indicators(rising_history)

        assert indicators.rsi == 100.0
        assert indicators.macd.macd > 0
        assert indicators.moving_averages.ema12 > indicators.moving_averages.ema26
        assert indicators.moving_averages.sma200 is None
        assert indicators.volatility >= 0
        assert indicators.stochastic is not None

    def test_all_indicators_on_empty_history(self):
        indicators = IndicatorEngine.calculate_all_indicators([])

        assert indicators.rsi == 50.0
        assert indicators.volatility == 0.0
        assert indicators.stochastic is None

    def test_indicator_signals_describe_uptrend(self, rising_history):
        indicators = IndicatorEngine.calculate_all_indicators(rising_history)
        signals = IndicatorEngine.generate_indicator_signals(indicators, rising_history[-1].price)

        assert signals == [
            "Stochastic %K above 80 - overbought",
            "20-period SMA above 50-period SMA - bullish trend",
        ]

    def test_indicator_signals_quiet_on_flat_history(self, flat_history):
        indicators = IndicatorEngine.calculate_all_indicators(flat_history)
        assert IndicatorEngine.generate_indicator_signals(indicators, 100.0) == []

    def test_indicator_signals_bollinger_breakout(self):
        prices = [100.0, 101.0] * 10 + [90.0]
        indicators = IndicatorEngine.calculate_all_indicators(build_price_history(prices))
        signals = IndicatorEngine.generate_indicator_signals(indicators, 90.0)

        assert "Price below lower Bollinger Band - potential bounce" in signals
        assert "Stochastic %K below 20 - oversold" in signals
