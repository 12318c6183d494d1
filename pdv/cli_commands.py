"""
Flask CLI commands for store maintenance.

Commands:
- flask init-db: Create all tables
- flask low-stock: List products at or below their low stock threshold
- flask expire-coupons: Deactivate unused coupons past their expiry
"""

import click

from pdv.database import get_session, create_all
from pdv.services.stock_service import get_low_stock_products
from pdv.services.coupon_service import expire_coupons


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables (development; production uses migrations)."""
        create_all()
        click.echo(click.style('Tabelas criadas.', fg='green'))

    @app.cli.command('low-stock')
    def low_stock_command():
        """List products with low stock."""
        products = get_low_stock_products(get_session())
        if not products:
            click.echo('Nenhum produto com estoque baixo.')
            return

        for product in products:
            click.echo(
                f'{product.name}: {product.on_hand_qty} em estoque '
                f'(mínimo {product.low_stock_threshold})'
            )

    @app.cli.command('expire-coupons')
    def expire_coupons_command():
        """Deactivate unused coupons past their expiry date."""
        try:
            count = expire_coupons(get_session())
        except Exception as e:
            click.echo(click.style(f'Erro ao expirar cupons: {e}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(f'{count} cupom(ns) expirado(s).', fg='green'))
