"""Record and API response models"""
