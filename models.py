from tortoise import fields, models


# -------- Leaf records --------
class CurtailmentRecord(models.Model):
    """
    One curtailed wind-farm action per (settlement_date, settlement_period, farm_id).
    volume is signed (negative = curtailed); payment = |volume| * original_price.
    """
    id = fields.IntField(pk=True)
    settlement_date = fields.DateField(index=True)
    settlement_period = fields.IntField(index=True)  # 1..48
    farm_id = fields.CharField(max_length=64, index=True)  # Elexon BMU id
    lead_party_name = fields.CharField(max_length=200, null=True)
    volume = fields.FloatField()
    payment = fields.FloatField()
    original_price = fields.FloatField()
    final_price = fields.FloatField()
    so_flag = fields.BooleanField(default=False)
    cadl_flag = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "curtailment_records"
        unique_together = ("settlement_date", "settlement_period", "farm_id")

    def __str__(self) -> str:
        return f"{self.farm_id}@{self.settlement_date} P{self.settlement_period}"


# -------- Energy cascade --------
class DailySummary(models.Model):
    summary_date = fields.DateField(pk=True)
    total_curtailed_energy = fields.FloatField(default=0)
    total_payment = fields.FloatField(default=0)
    record_count = fields.IntField(default=0)
    last_updated = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "daily_summaries"


class MonthlySummary(models.Model):
    year_month = fields.CharField(max_length=7, pk=True)  # "YYYY-MM"
    total_curtailed_energy = fields.FloatField(default=0)
    total_payment = fields.FloatField(default=0)
    last_updated = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "monthly_summaries"


class YearlySummary(models.Model):
    year = fields.CharField(max_length=4, pk=True)
    total_curtailed_energy = fields.FloatField(default=0)
    total_payment = fields.FloatField(default=0)
    last_updated = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "yearly_summaries"


# -------- Bitcoin --------
class HistoricalBitcoinCalculation(models.Model):
    id = fields.IntField(pk=True)
    settlement_date = fields.DateField(index=True)
    settlement_period = fields.IntField()
    farm_id = fields.CharField(max_length=64, index=True)
    miner_model = fields.CharField(max_length=32, index=True)
    bitcoin_mined = fields.FloatField()
    difficulty = fields.FloatField()
    block_reward = fields.FloatField()
    calculated_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "historical_bitcoin_calculations"
        unique_together = ("settlement_date", "settlement_period", "farm_id", "miner_model")


class BitcoinDailySummary(models.Model):
    id = fields.IntField(pk=True)
    summary_date = fields.DateField(index=True)
    miner_model = fields.CharField(max_length=32)
    bitcoin_mined = fields.FloatField(default=0)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "bitcoin_daily_summaries"
        unique_together = ("summary_date", "miner_model")


class BitcoinMonthlySummary(models.Model):
    id = fields.IntField(pk=True)
    year_month = fields.CharField(max_length=7, index=True)
    miner_model = fields.CharField(max_length=32)
    bitcoin_mined = fields.FloatField(default=0)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "bitcoin_monthly_summaries"
        unique_together = ("year_month", "miner_model")


class BitcoinYearlySummary(models.Model):
    id = fields.IntField(pk=True)
    year = fields.CharField(max_length=4, index=True)
    miner_model = fields.CharField(max_length=32)
    bitcoin_mined = fields.FloatField(default=0)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "bitcoin_yearly_summaries"
        unique_together = ("year", "miner_model")


# -------- Reference data --------
class DifficultySample(models.Model):
    """Network difficulty (and BTC price) valid from sample_date onward."""
    id = fields.IntField(pk=True)
    sample_date = fields.DateField(unique=True, index=True)
    difficulty = fields.FloatField()
    price_usd = fields.FloatField(null=True)
    price_gbp = fields.FloatField(null=True)
    source = fields.CharField(max_length=40, default="seed")
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "difficulty_samples"


# -------- Run log --------
class ReconciliationRun(models.Model):
    id = fields.IntField(pk=True)
    trigger = fields.CharField(max_length=20, default="manual")  # manual / cli / scheduler
    start_date = fields.DateField()
    end_date = fields.DateField()
    start_period = fields.IntField(default=1)
    end_period = fields.IntField(default=48)
    status = fields.CharField(max_length=20, default="running")  # running / completed / partial / failed
    periods_requested = fields.IntField(default=0)
    periods_succeeded = fields.IntField(default=0)
    periods_failed = fields.IntField(default=0)
    records_inserted = fields.IntField(default=0)
    error_message = fields.TextField(null=True)
    report = fields.JSONField(null=True)
    started_at = fields.DatetimeField(auto_now_add=True, index=True)
    finished_at = fields.DatetimeField(null=True)

    class Meta:
        table = "reconciliation_runs"

    def __str__(self) -> str:
        return f"run#{self.id} {self.start_date}..{self.end_date} [{self.status}]"
