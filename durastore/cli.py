import asyncio
import logging
import typer
from botocore.exceptions import BotoCoreError, ClientError

from durastore.errors import DurableStoreError
from durastore.gateway.dynamodb import dynamodb_client
from durastore.settings import settings
from durastore.store import build_gateway
from durastore.codec import RecordCodec
from durastore.testkit import create_table as create_states_table
from durastore.utils.logging import setup_logging
from durastore.utils.tracing import init_tracer

app = typer.Typer(help="durastore operational interface")

@app.callback()
def main() -> None:
    setup_logging(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO), settings.LOG_FORMAT)
    if settings.OTEL_ENABLED:
        init_tracer("durastore-cli")

@app.command()
def get(
    persistence_id: str = typer.Argument(..., help="Persistence ID to look up"),
    show_payload: bool = typer.Option(False, "--payload", help="Print the payload as hex"),
):
    """
    Shows the stored state record for a persistence ID.
    """
    async def _get():
        gateway = build_gateway(settings)
        await gateway.connect()
        try:
            return await gateway.get(persistence_id)
        finally:
            await gateway.close()

    try:
        record = asyncio.run(_get())
    except DurableStoreError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if record is None:
        typer.echo(f"No state stored for {persistence_id}")
        raise typer.Exit(code=1)

    typer.echo(f"PersistenceID: {record.persistence_id}")
    typer.echo(f"Version:       {record.version}")
    typer.echo(f"Manifest:      {record.manifest}")
    typer.echo(f"Timestamp:     {record.timestamp}")
    typer.echo(f"Shard:         {record.shard}")
    typer.echo(f"Payload size:  {len(record.payload)} bytes")

    try:
        state = RecordCodec().to_message(record.manifest, record.payload, persistence_id=persistence_id)
        typer.echo(f"State type:    {state.type_url or '<empty>'}")
    except DurableStoreError as e:
        typer.echo(f"State type:    <undecodable: {e}>")

    if show_payload:
        typer.echo(record.payload.hex())

@app.command("create-table")
def create_table(
    table_name: str = typer.Option(None, help="Table name (defaults to DURASTORE_TABLE_NAME)"),
    exist_ok: bool = typer.Option(True, help="Succeed if the table already exists"),
):
    """
    Creates the DynamoDB states table.
    """
    secret = settings.AWS_SECRET_ACCESS_KEY
    client = dynamodb_client(
        endpoint_url=settings.DYNAMODB_ENDPOINT,
        region_name=settings.AWS_REGION,
        access_key_id=settings.AWS_ACCESS_KEY_ID,
        secret_access_key=secret.get_secret_value() if secret else None,
    )
    name = table_name or settings.TABLE_NAME
    try:
        create_states_table(client, name, exist_ok=exist_ok)
    except (ClientError, BotoCoreError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Table {name} ready")

if __name__ == "__main__":
    app()
