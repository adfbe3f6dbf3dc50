import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('conversations', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Message',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('sender_id', models.CharField(max_length=100)),
                ('body', models.TextField(max_length=1000)),
                ('kind', models.CharField(choices=[('text', 'Text'), ('system', 'System')], default='text', max_length=10)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('conversation', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='messages', to='conversations.conversation')),
                ('reply_to', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='replies', to='dmessages.message')),
            ],
            options={
                'db_table': 'dmessages_message',
                'ordering': ['created_at', 'id'],
                'indexes': [models.Index(fields=['conversation', '-created_at'], name='msg_conv_created_idx')],
            },
        ),
        migrations.CreateModel(
            name='MessageReceipt',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('user_id', models.CharField(max_length=100)),
                ('read_at', models.DateTimeField(auto_now_add=True)),
                ('message', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='receipts', to='dmessages.message')),
            ],
            options={
                'db_table': 'dmessages_messagereceipt',
                'indexes': [models.Index(fields=['user_id'], name='receipt_user_idx')],
                'constraints': [models.UniqueConstraint(fields=('message', 'user_id'), name='unique_message_receipt')],
            },
        ),
    ]
