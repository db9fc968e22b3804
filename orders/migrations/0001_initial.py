import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('order_number', models.UUIDField(db_index=True, default=uuid.uuid4, unique=True)),
                ('user_id', models.UUIDField(db_index=True)),
                ('temple_id', models.UUIDField(blank=True, db_index=True, null=True)),
                ('address_id', models.UUIDField(blank=True, db_index=True, null=True)),
                ('order_type', models.CharField(choices=[('darshan', 'Darshan'), ('puja', 'Puja'), ('prasad', 'Prasad'), ('product', 'Product'), ('event', 'Event')], max_length=16)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('confirmed', 'Confirmed'), ('processing', 'Processing'), ('ready', 'Ready'), ('shipped', 'Shipped'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('refunded', 'Refunded')], db_index=True, default='pending', max_length=16)),
                ('scheduled_date', models.DateField(blank=True, null=True)),
                ('scheduled_timestamp', models.DateTimeField(blank=True, null=True)),
                ('fulfillment_type', models.CharField(blank=True, choices=[('pickup', 'Pickup'), ('delivery', 'Delivery'), ('in_person', 'In person'), ('digital', 'Digital')], max_length=16, null=True)),
                ('subtotal', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('discount_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('convenience_fee', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('tax_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('total_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('currency', models.CharField(blank=True, max_length=10, null=True)),
                ('payment_status', models.CharField(choices=[('pending', 'Pending'), ('paid', 'Paid'), ('failed', 'Failed'), ('refunded', 'Refunded')], default='pending', max_length=16)),
                ('payment_method', models.CharField(blank=True, max_length=32, null=True)),
                ('payment_id', models.CharField(blank=True, max_length=64, null=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('contact_name', models.CharField(blank=True, max_length=255, null=True)),
                ('contact_phone', models.CharField(blank=True, max_length=32, null=True)),
                ('contact_email', models.CharField(blank=True, max_length=255, null=True)),
                ('shipping_address', models.TextField(blank=True, null=True)),
                ('delivery_type', models.CharField(blank=True, choices=[('standard', 'Standard'), ('express', 'Express')], max_length=16, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ('-created_at',),
            },
        ),
        migrations.CreateModel(
            name='OrderItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('item_type', models.CharField(db_index=True, max_length=32)),
                ('item_id', models.UUIDField(blank=True, null=True)),
                ('item_name', models.CharField(blank=True, max_length=255, null=True)),
                ('item_description', models.TextField(blank=True, null=True)),
                ('item_image_url', models.CharField(blank=True, max_length=512, null=True)),
                ('product_id', models.UUIDField(blank=True, db_index=True, null=True)),
                ('puja_id', models.UUIDField(blank=True, db_index=True, null=True)),
                ('prasad_id', models.UUIDField(blank=True, db_index=True, null=True)),
                ('darshan_id', models.UUIDField(blank=True, db_index=True, null=True)),
                ('quantity', models.PositiveIntegerField(blank=True, null=True)),
                ('unit_price', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('total_price', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('item_details', models.JSONField(blank=True, null=True)),
                ('status', models.CharField(blank=True, db_index=True, max_length=32, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='orders.order')),
            ],
        ),
        migrations.CreateModel(
            name='OrderStatusHistory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(db_index=True, max_length=16)),
                ('previous_status', models.CharField(blank=True, db_index=True, max_length=16, null=True)),
                ('notes', models.TextField(blank=True, null=True)),
                ('location', models.CharField(blank=True, max_length=255, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='status_history', to='orders.order')),
            ],
            options={
                'verbose_name_plural': 'order status history',
                'ordering': ('created_at',),
            },
        ),
    ]
