"""Basic orchestration example using the built-in DI container.

Reads OPENAI_API_KEY / GEMINI_API_KEY (and the ORCHESTRATOR_* settings) from
the environment.
"""

import asyncio
import logging

from ai_orchestrator import CallContext, CallOptions, DIContainer


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    async with DIContainer.create_orchestrator() as orchestrator:
        print("Availability:", orchestrator.check_availability())

        result = await orchestrator.generate_text(
            "Summarize the differences between SQL and NoSQL databases.",
            system_prompt="Answer in three short bullet points.",
            options=CallOptions(max_output_tokens=300, temperature=0.3),
            context=CallContext(function_name="basic_usage", identity="demo-user"),
        )

    if result.success:
        print("Provider:", result.provider_used.value)
        print("Model:", result.model)
        print("Cost (USD, estimate):", result.cost_estimate_usd)
        print("Response:", result.content)
    else:
        print(f"Failed ({result.status.value}):", result.error_message)


if __name__ == "__main__":
    asyncio.run(main())
