"""
ReasoningService - LLM news impact analysis and trade explanations.

Purpose: Turn article text into a structured Analysis, and a settled trade
into a short first-person explanation.
- Malformed model output degrades to a neutral hold (never trades)
- API failures raise UpstreamError
- explain() never fails; it falls back to a template
"""
import asyncio
import json
import logging
from typing import Any, List, Optional

from openai import OpenAI
from pydantic import ValidationError as PydanticValidationError

from ..errors import UpstreamError
from ..schemas import Analysis, AnalysisAction, Decision, Holding, NewsArticle, Sentiment

logger = logging.getLogger("news_trader.services.reasoning")

ANALYSIS_SYSTEM_PROMPT = """You are an expert financial analyst. Analyze breaking news and its impact on one stock position.

RESPOND WITH VALID JSON ONLY. No explanation text outside JSON.

{
  "impact_score": <number 1-10>,
  "sentiment": "bullish" | "bearish" | "neutral",
  "action": "buy" | "sell" | "hold",
  "confidence": <number 0-1>,
  "amount_usd": <recommended trade size in USD>,
  "reasoning": "<2-3 sentence explanation>"
}

Example:
News: "Apple announces record iPhone sales beating all expectations by 20%"
{"impact_score": 9, "sentiment": "bullish", "action": "buy", "confidence": 0.9, "amount_usd": 500, "reasoning": "Record sales indicate strong demand and will likely drive the stock up."}

RULES:
1. impact_score must be between 1 and 10.
2. confidence must be between 0 and 1.
3. amount_usd should be between 100 and 1000 based on impact and confidence.
4. Only recommend buy or sell if impact_score >= 7 and confidence >= 0.75; otherwise hold.
5. Be realistic and conservative. Consider current portfolio exposure."""

EXPLAIN_SYSTEM_PROMPT = """You explain trading decisions to users in simple, clear language.
Write 2-3 sentences in first person as the trading agent. Be confident and clear.
Mention the news, the impact and confidence, the trade, and the settlement reference if there is one."""


def neutral_analysis(ticker: Optional[str] = None, reason: str = "Unable to analyze news. Holding position.") -> Analysis:
    return Analysis(
        impact_score=5,
        sentiment=Sentiment.NEUTRAL,
        action=AnalysisAction.HOLD,
        confidence=0.5,
        amount_usd=0.0,
        reasoning=reason,
        ticker=ticker,
    )


def parse_analysis(content: str, ticker: Optional[str] = None) -> Analysis:
    """
    Parse a model response into an Analysis.

    Strips markdown code fences. Anything unparseable or out of range
    becomes a neutral hold.
    """
    content = content.strip()
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"Analysis response is not JSON: {e}")
        return neutral_analysis(ticker, "Unable to parse analysis response. Holding position.")

    if not isinstance(data, dict):
        return neutral_analysis(ticker, "Unable to parse analysis response. Holding position.")

    data["ticker"] = ticker
    try:
        return Analysis.model_validate(data)
    except PydanticValidationError as e:
        logger.warning(f"Analysis response failed validation: {e.error_count()} errors")
        return neutral_analysis(ticker, "Analysis response out of range. Holding position.")


def fallback_explanation(analysis: Analysis, decision: Decision) -> str:
    text = (
        f"I analyzed news about {decision.ticker} with an impact score of {analysis.impact_score:g}/10. "
        f"Based on {analysis.sentiment} sentiment and {analysis.confidence * 100:.0f}% confidence, "
        f"I decided to {decision.action} {decision.shares} shares for ${decision.amount_usd:.2f}."
    )
    if decision.settlement_tx:
        text += f" Settlement reference: {decision.settlement_tx}"
    return text


class OpenAIReasoningService:
    """Reasoning backed by OpenAI chat completions."""

    def __init__(self, api_key: str, model: str = "gpt-4o", client: Optional[Any] = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def _complete(self, system: str, user: str, max_tokens: int) -> Optional[str]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=0.3,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content

    async def analyze_impact(self, text: str, ticker: str, holdings: List[Holding]) -> Analysis:
        """
        Assess how an article affects one ticker.

        Raises:
            UpstreamError: the model call failed
        """
        portfolio_json = json.dumps([h.model_dump() for h in holdings], indent=2)
        prompt = (
            f"Portfolio Holdings: {portfolio_json}\n"
            f"Stock in Question: {ticker}\n"
            f'Breaking News: "{text}"\n\n'
            "Analyze this news and recommend a trading action."
        )

        try:
            content = await asyncio.to_thread(self._complete, ANALYSIS_SYSTEM_PROMPT, prompt, 500)
        except Exception as e:
            logger.error(f"Analysis call failed for {ticker}: {e}")
            raise UpstreamError("openai", str(e))

        if content is None:
            return neutral_analysis(ticker, "Empty analysis response. Holding position.")

        analysis = parse_analysis(content, ticker)
        logger.info(
            f"Analysis {ticker}: {analysis.action} impact={analysis.impact_score:g} "
            f"confidence={analysis.confidence:.2f}"
        )
        return analysis

    async def explain(self, article: NewsArticle, analysis: Analysis, decision: Decision) -> str:
        settlement = (
            f"Settled with reference {decision.settlement_tx} ({decision.settlement_link})"
            if decision.settlement_tx else "Settlement pending"
        )
        prompt = (
            f'NEWS: "{article.title}"\n'
            f"ANALYSIS: Impact {analysis.impact_score:g}/10, Sentiment: {analysis.sentiment}, "
            f"Confidence: {analysis.confidence * 100:.0f}%\n"
            f"DECISION: {str(decision.action).upper()} {decision.shares} shares of {decision.ticker} "
            f"for ${decision.amount_usd:.2f}\n"
            f"SETTLEMENT: {settlement}"
        )

        try:
            content = await asyncio.to_thread(self._complete, EXPLAIN_SYSTEM_PROMPT, prompt, 200)
        except Exception as e:
            logger.error(f"Explanation call failed: {e}")
            return fallback_explanation(analysis, decision)

        if not content or not content.strip():
            return fallback_explanation(analysis, decision)
        return content.strip()

    async def close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None
