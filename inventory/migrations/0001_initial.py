from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(db_index=True, help_text='Product title for display and search', max_length=200)),
                ('description', models.TextField(blank=True, default='', help_text='Optional product description')),
                ('category', models.CharField(choices=[('NEWBORN', 'Newborn'), ('INFANT', 'Infant'), ('TODDLER', 'Toddler'), ('ACCESSORIES', 'Accessories')], db_index=True, default='NEWBORN', max_length=20)),
                ('cogs', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Cost of goods sold per unit', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('base_price', models.DecimalField(decimal_places=2, help_text='Selling price per unit, before VAT', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('is_non_returnable', models.BooleanField(default=False)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether product is available for ordering')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Product',
                'verbose_name_plural': 'Products',
                'ordering': ['title'],
                'indexes': [
                    models.Index(fields=['title', 'is_active'], name='product_title_active_idx'),
                    models.Index(fields=['category', 'is_active'], name='product_category_active_idx'),
                    models.Index(fields=['base_price'], name='product_base_price_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ProductVariant',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('size', models.CharField(max_length=50)),
                ('color', models.CharField(max_length=50)),
                ('sku', models.CharField(max_length=64, unique=True)),
                ('stock_count', models.PositiveIntegerField(default=0, help_text='Units available for sale')),
                ('low_stock_threshold', models.PositiveIntegerField(default=5, help_text='Threshold for low stock alerts')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('product', models.ForeignKey(help_text='Owning product', on_delete=django.db.models.deletion.CASCADE, related_name='variants', to='inventory.product')),
            ],
            options={
                'verbose_name': 'Product Variant',
                'verbose_name_plural': 'Product Variants',
                'ordering': ['product', 'sku'],
                'indexes': [
                    models.Index(fields=['product', 'stock_count'], name='variant_product_stock_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(stock_count__gte=0), name='variant_stock_count_non_negative'),
                ],
            },
        ),
    ]
