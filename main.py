import asyncio
import sys
from pprint import pprint

from tarotwhisper import tarot_core
from tarotwhisper.config import ConfigurationError, UserLlmSettings, configure_logging, load_default_llm_config
from tarotwhisper.llm import ChatClient
from tarotwhisper.logic import perform_analysis, perform_reading, require_llm_config


async def explain(question: str, spread_id: str, seed: str) -> None:
    spread = tarot_core.get_spread(spread_id)
    cards = tarot_core.draw_cards(spread_id, seed=seed)
    config = require_llm_config(UserLlmSettings(), load_default_llm_config())

    printed = 0

    def show(text: str) -> None:
        nonlocal printed
        sys.stdout.write(text[printed:])
        sys.stdout.flush()
        printed = len(text)

    async with ChatClient() as client:
        result = await perform_analysis(question, spread, cards, config, client, on_update=show)
    print()
    if result.error:
        print(f"[error] {result.error}")


if __name__ == "__main__":
    configure_logging()
    # Example: three-card time spread with a fixed seed
    reading = perform_reading(spread_id="three_card_time", seed="demo-seed", question="Should I change my career?")
    pprint(reading, sort_dicts=False)

    # Streams an interpretation when DEFAULT_LLM_* is configured and the proxy is running
    try:
        asyncio.run(explain("Should I change my career?", "three_card_time", "demo-seed"))
    except ConfigurationError as e:
        print(f"(skipping analysis) {e}")
