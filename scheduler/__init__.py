"""Scheduler 모듈 - 잡 모델, 스케줄 계산, 스토어, 스케줄링 API"""
