# This file is for local testing of the subscription engine: it logs every change event of one channel.

import asyncio
import logging
import os

from dotenv import load_dotenv

from salesforce_pubsub_cdc import (
    LoggingSink,
    PubSubClient,
    SoapLoginCredentialSource,
    SubscriberConfig,
    SubscriptionEngine,
)
from salesforce_pubsub_cdc.config import get_argument

load_dotenv()

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
# Reduce noise from gRPC internals
logging.getLogger("grpc").setLevel(logging.WARNING)

config = SubscriberConfig.from_env(
    {"topic": os.getenv("TOPIC") or "/data/ChangeEvents"}  # Use "/data/ChangeEvents" for ALL objects, or a specific channel like "/data/AccountChangeEvent"
)

credential_source = SoapLoginCredentialSource(
    url=get_argument("url", {}),
    username=get_argument("username", {}),
    password=get_argument("password", {}),
    api_version=config.api_version,
)

client = PubSubClient(
    credential_source, grpc_host=config.grpc_host, grpc_port=config.grpc_port
)


async def refresh_credentials():
    # SOAP login blocks; keep it off the event loop
    await asyncio.to_thread(credential_source.refresh)
    engine.notify_credentials_refreshed()


engine = SubscriptionEngine(
    config=config,
    transport=client,
    sink=LoggingSink(),
    on_auth_required=refresh_credentials,
)

print(f"Monitoring Channel: {config.topic_name} (replay preset {config.replay_preset.value})")


async def run():
    try:
        await engine.stream_forever()
    finally:
        await client.close()


try:
    asyncio.run(run())
except KeyboardInterrupt:
    print("Shutting down gracefully...")
